"""
Chunked, resumable transcription engine.
Drives one file through extraction, chunk split, sequential inference and
incremental persistence, yielding a ChunkProgress event per finished chunk.
"""

import logging
from typing import Iterator

import numpy as np

from echowrite.core.constants import CHUNK_SAMPLES, SAMPLE_RATE, SILENCE_PEAK
from echowrite.core.error_codes import InferenceError
from echowrite.core.extract_audio import AudioExtractor
from echowrite.core.models import ChunkProgress, canonical_path
from echowrite.core.progress_store import ProgressStore
from echowrite.core.transcribe_deepgram import Recognizer

logger = logging.getLogger(__name__)


def chunk_count(total_samples: int, chunk_samples: int) -> int:
    return -(-total_samples // chunk_samples) if total_samples > 0 else 0


def plan_chunks(total_samples: int, chunk_samples: int,
                resume_offset: int = 0) -> list[tuple[int, int, int]]:
    """
    Fixed-size, non-overlapping (index, start, end) sample ranges still to do.
    Chunks ending at or before resume_offset are skipped; if the offset falls
    inside a chunk, that chunk starts at the offset.
    """
    if chunk_samples <= 0:
        raise ValueError("chunk_samples must be positive")
    plan = []
    for idx in range(resume_offset // chunk_samples, chunk_count(total_samples, chunk_samples)):
        start = max(idx * chunk_samples, resume_offset)
        end = min((idx + 1) * chunk_samples, total_samples)
        if start < end:
            plan.append((idx, start, end))
    return plan


def is_silent(samples: np.ndarray, peak: float = SILENCE_PEAK) -> bool:
    return samples.size == 0 or float(np.max(np.abs(samples))) <= peak


class TranscriptionEngine:
    """
    Transcribes one file at a time. Not reentrant: the recognizer is a shared
    resource, so callers must serialize run()/stream().
    """

    def __init__(self, store: ProgressStore, extractor: AudioExtractor,
                 recognizer: Recognizer, chunk_samples: int = CHUNK_SAMPLES):
        if chunk_samples <= 0:
            raise ValueError("chunk_samples must be positive")
        self.store = store
        self.extractor = extractor
        self.recognizer = recognizer
        self.chunk_samples = chunk_samples

    def run(self, path: str) -> str:
        """Transcribe to completion and return the full stored transcript."""
        for _ in self.stream(path):
            pass
        return self.store.read_transcript(path) or ""

    def stream(self, path: str) -> Iterator[ChunkProgress]:
        """
        Yield one ChunkProgress per completed chunk. Raises ExtractionError,
        InferenceError or PersistenceError; progress saved before the failure
        stays in the store and is the resume point of the next call.
        """
        key = canonical_path(path)

        # ── Resume point ──
        self.store.discard_uncommitted(key)
        offset = self.store.load(key)

        # ── Extract (not resumable) ──
        samples = np.asarray(self.extractor.extract(key), dtype=np.float32).reshape(-1)
        total_samples = int(samples.size)

        if offset > total_samples:
            logger.warning("Saved offset %d exceeds %d samples for %s, file changed; "
                           "starting over", offset, total_samples, key)
            self.store.reset(key)
            offset = 0

        if is_silent(samples):
            logger.info("No audible samples in %s, nothing to transcribe", key)
            self.store.mark_completed(key, total_samples)
            return

        total = chunk_count(total_samples, self.chunk_samples)
        plan = plan_chunks(total_samples, self.chunk_samples, offset)
        if offset:
            logger.info("Resuming %s at sample %d (%.1fs), %d of %d chunks left",
                        key, offset, offset / SAMPLE_RATE, len(plan), total)
        if not plan:
            # Every chunk was saved but the run never got marked completed
            yield ChunkProgress(path=key, index=total - 1, total=total,
                                end_offset=total_samples, text="")

        # ── Sequential inference ──
        for idx, start, end in plan:
            logger.debug("Transcribing chunk %d/%d of %s", idx + 1, total, key)
            try:
                text = self.recognizer.transcribe(samples[start:end])
            except InferenceError as e:
                raise InferenceError(f"Chunk {idx + 1}/{total}: {e.message}",
                                     code=e.code, retryable=e.retryable) from e
            except Exception as e:
                raise InferenceError(f"Chunk {idx + 1}/{total}: {e}") from e

            # Append first; save() commits the text together with the offset
            self.store.append_transcript(key, text or "")
            self.store.save(key, end, total_samples)

            yield ChunkProgress(path=key, index=idx, total=total,
                                end_offset=end, text=text or "")

        self.store.mark_completed(key, total_samples)
        logger.info("Transcription completed for %s (%d chunks)", key, total)
