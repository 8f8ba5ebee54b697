"""
Job Queue Manager and Worker.
Transcribes one file at a time, in submission order.
"""

import logging
import threading
from collections import deque
from typing import Callable, Optional

from echowrite.core.constants import (
    FilePhase, ACTIVE_PHASES, ErrorCode, MAX_ERROR_MESSAGE_LEN,
)
from echowrite.core.error_codes import PersistenceError, TranscriptionError
from echowrite.core.models import FileState, Job, canonical_path
from echowrite.core.transcriber import TranscriptionEngine

logger = logging.getLogger(__name__)


class JobQueueManager:
    """
    Owns the per-file state map and the pending queue, both guarded by one
    condition variable. A single worker thread drains the queue through the
    transcription engine. Observers get immutable FileState snapshots through
    on_state_changed, always called outside the lock.
    """

    def __init__(self, engine: TranscriptionEngine):
        self.engine = engine
        self._cond = threading.Condition()
        self._states: dict[str, FileState] = {}
        self._pending: deque[Job] = deque()
        self._current: Optional[str] = None
        self._worker_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._running = False

        # Callbacks
        self.on_state_changed: Optional[Callable[[str, FileState], None]] = None
        self.on_queue_empty: Optional[Callable[[], None]] = None

    def set_engine(self, engine: TranscriptionEngine):
        """Use another engine for jobs dispatched from now on."""
        with self._cond:
            self.engine = engine

    # ── Queue management ──────────────────────────────────────────────

    def submit(self, path: str) -> FileState:
        """
        Queue a file for transcription. No-op while it is queued or being
        processed; a completed transcript on disk is surfaced as Done
        without queueing any work. Also used to retry Failed files.
        """
        key = canonical_path(path)
        with self._cond:
            state = self._states.get(key, FileState())
            if state.phase in ACTIVE_PHASES:
                return state
            store = self.engine.store

        # Disk I/O outside the lock
        existing = self._completed_transcript(store, key)

        with self._cond:
            state = self._states.get(key, FileState())
            if state.phase in ACTIVE_PHASES:
                return state
            if existing is not None:
                state = FileState(phase=FilePhase.DONE, result=existing)
            else:
                state = FileState(phase=FilePhase.QUEUED)
                self._pending.append(Job(path=key))
                self._cond.notify_all()
            self._states[key] = state

        if existing is not None:
            logger.info("Transcript already exists for %s, skipping", key)
        else:
            logger.info("Queued %s", key)
        self._notify_state_changed(key, state)
        return state

    def status(self, path: str) -> FileState:
        key = canonical_path(path)
        with self._cond:
            return self._states.get(key, FileState())

    def all_states(self) -> dict[str, FileState]:
        with self._cond:
            return dict(self._states)

    def pending(self) -> list[str]:
        with self._cond:
            return [job.path for job in self._pending]

    def current(self) -> Optional[str]:
        with self._cond:
            return self._current

    def clear(self) -> int:
        """Drop every job not yet started. The in-flight job keeps running."""
        with self._cond:
            dropped = [job.path for job in self._pending]
            self._pending.clear()
            idle = FileState()
            for key in dropped:
                self._states[key] = idle
            self._cond.notify_all()

        for key in dropped:
            self._notify_state_changed(key, idle)
        if dropped:
            logger.info("Cleared %d pending jobs", len(dropped))
        return len(dropped)

    # ── Worker lifecycle ──────────────────────────────────────────────

    def start_processing(self):
        """Start the worker thread, or keep the current one if it is still alive."""
        with self._cond:
            self._stop_event.clear()
            self._running = True
            thread = self._worker_thread
            if thread is not None and thread.is_alive():
                # A stop that timed out; that worker is still finishing its job
                self._cond.notify_all()
                return
            self._worker_thread = threading.Thread(
                target=self._worker_loop, name="echowrite-worker", daemon=True)
            self._worker_thread.start()

    def stop_processing(self, timeout: float | None = None):
        """Stop the worker once the in-flight job (if any) has finished."""
        self._stop_event.set()
        with self._cond:
            self._cond.notify_all()
            thread = self._worker_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout)

    def is_running(self) -> bool:
        return self._running

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued or processing. False on timeout."""
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._pending and self._current is None, timeout)

    # ── Worker loop ───────────────────────────────────────────────────

    def _worker_loop(self):
        """Main worker loop: processes one job at a time."""
        try:
            while True:
                dispatched = self._next_job()
                if dispatched is None:
                    break
                job, engine = dispatched
                self._process_job(job, engine)
        except Exception as e:
            logger.error("Worker loop error: %s", e, exc_info=True)
        finally:
            with self._cond:
                if self._worker_thread is threading.current_thread():
                    self._worker_thread = None
                    self._running = False
                    self._current = None
                self._cond.notify_all()

    def _next_job(self) -> tuple[Job, TranscriptionEngine] | None:
        """
        Wait for a job, then dequeue it and mark it Processing. Returns None
        once stopped; the worker gives up ownership under the lock, so a
        start_processing() after this point starts a fresh thread.
        """
        with self._cond:
            while not self._pending and not self._stop_event.is_set():
                self._cond.wait()
            if self._stop_event.is_set():
                self._worker_thread = None
                self._running = False
                return None
            job = self._pending.popleft()
            self._current = job.path
            engine = self.engine
            state = FileState(phase=FilePhase.PROCESSING)
            self._states[job.path] = state

        self._notify_state_changed(job.path, state)
        return job, engine

    def _process_job(self, job: Job, engine: TranscriptionEngine):
        """Run one file through the engine; every failure ends as Failed."""
        key = job.path
        logger.info("Transcribing %s", key)
        try:
            for event in engine.stream(key):
                self._update_progress(key, event.fraction)
            result = engine.store.read_transcript(key) or ""
        except TranscriptionError as e:
            logger.warning("Transcription failed for %s (retryable=%s): %s", key, e.retryable, e)
            self._finish_job(key, FileState(
                phase=FilePhase.FAILED,
                error=e.message[:MAX_ERROR_MESSAGE_LEN],
            ))
        except Exception as e:
            logger.error("Unexpected error processing %s: %s", key, e, exc_info=True)
            self._finish_job(key, FileState(
                phase=FilePhase.FAILED,
                error=f"[{ErrorCode.UNEXPECTED}] {e}"[:MAX_ERROR_MESSAGE_LEN],
            ))
        else:
            logger.info("Transcription completed for %s", key)
            self._finish_job(key, FileState(phase=FilePhase.DONE, result=result))

    def _update_progress(self, key: str, fraction: float):
        with self._cond:
            state = self._states.get(key, FileState())
            if state.phase != FilePhase.PROCESSING:
                return
            progress = max(state.progress, min(1.0, max(0.0, fraction)))
            state = state.evolve(progress=progress)
            self._states[key] = state
        self._notify_state_changed(key, state)

    def _finish_job(self, key: str, state: FileState):
        with self._cond:
            self._states[key] = state
            self._current = None
            queue_empty = not self._pending
            self._cond.notify_all()

        self._notify_state_changed(key, state)
        if queue_empty and self.on_queue_empty:
            try:
                self.on_queue_empty()
            except Exception as e:
                logger.error("Queue-empty observer failed: %s", e, exc_info=True)

    @staticmethod
    def _completed_transcript(store, key: str) -> str | None:
        """
        Text of a finished transcript, or None. A transcript with a progress
        record that is not completed belongs to an interrupted run.
        """
        try:
            text = store.read_transcript(key)
            if not text:
                return None
            record = store.get_record(key)
        except PersistenceError as e:
            logger.warning("Could not check existing transcript for %s: %s", key, e)
            return None
        if record is None or record.completed:
            return text
        return None

    def _notify_state_changed(self, key: str, state: FileState):
        """Notify observers of a state change."""
        if not self.on_state_changed:
            return
        try:
            self.on_state_changed(key, state)
        except Exception as e:
            logger.error("State observer failed for %s: %s", key, e, exc_info=True)
