"""
Pipeline: builds the watcher, scheduler, engine and store once and wires
discovery to submission.
"""

import logging
from pathlib import Path

from echowrite.core.config import AppConfig
from echowrite.core.constants import CHUNK_SAMPLES, SCAN_DEBOUNCE_SEC
from echowrite.core.extract_audio import AudioExtractor, FfmpegExtractor
from echowrite.core.job_queue import JobQueueManager
from echowrite.core.models import FileState
from echowrite.core.progress_store import ProgressStore
from echowrite.core.transcribe_deepgram import DeepgramRecognizer, Recognizer
from echowrite.core.transcriber import TranscriptionEngine
from echowrite.core.watcher import DirectoryWatcher

logger = logging.getLogger(__name__)


class Pipeline:

    def __init__(self, root: str | Path,
                 extractor: AudioExtractor,
                 recognizer: Recognizer,
                 chunk_samples: int = CHUNK_SAMPLES,
                 debounce_sec: float = SCAN_DEBOUNCE_SEC):
        self.extractor = extractor
        self.recognizer = recognizer
        self.chunk_samples = chunk_samples

        self.store = ProgressStore(root)
        self.engine = TranscriptionEngine(self.store, extractor, recognizer, chunk_samples)
        self.scheduler = JobQueueManager(self.engine)
        self.watcher = DirectoryWatcher(debounce_sec=debounce_sec)
        self.watcher.on_file_discovered = self.scheduler.submit

    @classmethod
    def from_config(cls, config: AppConfig, root: str | Path | None = None,
                    extractor: AudioExtractor | None = None,
                    recognizer: Recognizer | None = None) -> "Pipeline":
        if recognizer is None:
            recognizer = DeepgramRecognizer(
                model=config.get('deepgram_model'),
                language=config.get('deepgram_language'),
            )
        return cls(
            root or config.watch_root,
            extractor or FfmpegExtractor(),
            recognizer,
            chunk_samples=config.chunk_samples,
            debounce_sec=config.get('scan_debounce_sec', SCAN_DEBOUNCE_SEC),
        )

    @property
    def root(self) -> Path:
        return self.store.root

    def start(self):
        """Start the worker, then watch the root (existing files are submitted)."""
        self.scheduler.start_processing()
        self.watcher.set_root(self.store.root)

    def stop(self, timeout: float | None = None):
        self.watcher.stop()
        self.scheduler.stop_processing(timeout)

    def set_root(self, root: str | Path):
        """
        Switch to another watched folder. Pending jobs are dropped; a job
        already running finishes against the previous folder's store.
        """
        self.scheduler.clear()
        self.store = ProgressStore(root)
        self.engine = TranscriptionEngine(self.store, self.extractor, self.recognizer,
                                          self.chunk_samples)
        self.scheduler.set_engine(self.engine)
        self.watcher.set_root(self.store.root)

    # ── Observer interface ────────────────────────────────────────────

    def submit(self, path: str | Path) -> FileState:
        """Submit or retry a file."""
        return self.scheduler.submit(str(path))

    def status(self, path: str | Path) -> FileState:
        return self.scheduler.status(str(path))

    @property
    def files(self) -> list[str]:
        return self.watcher.files
