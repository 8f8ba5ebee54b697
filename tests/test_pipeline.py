#!/usr/bin/env python3
"""
Tests for the job queue, the directory watcher and the assembled pipeline.
"""

import sys
import os
import time
import tempfile
import threading
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import numpy as np
from watchdog.events import DirModifiedEvent, FileCreatedEvent

from echowrite.core.constants import FilePhase, ErrorCode, RESULTS_DIR_NAME
from echowrite.core.error_codes import ExtractionError, InferenceError, PersistenceError
from echowrite.core.job_queue import JobQueueManager
from echowrite.core.models import canonical_path
from echowrite.core.pipeline import Pipeline
from echowrite.core.progress_store import ProgressStore
from echowrite.core.transcriber import TranscriptionEngine
from echowrite.core.watcher import DirectoryWatcher, _ScanRequestHandler

CHUNK = 4
TIMEOUT = 10


def make_audio(first_label: int, n_chunks: int, chunk: int = CHUNK) -> np.ndarray:
    values = [(first_label + i) / 100.0 for i in range(n_chunks)]
    return np.repeat(np.array(values, dtype=np.float32), chunk)


class FakeExtractor:
    def __init__(self):
        self.audio: dict[str, np.ndarray] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[str] = []

    def set(self, path, audio):
        self.audio[canonical_path(path)] = audio

    def fail(self, path, error: Exception):
        self.errors[canonical_path(path)] = error

    def extract(self, path):
        self.calls.append(path)
        if path in self.errors:
            raise self.errors.pop(path)
        return self.audio[path]


class LabelRecognizer:
    def __init__(self, log: list | None = None):
        self.fail_labels: set[int] = set()
        self.calls: list[int] = []
        self.log = log

    def transcribe(self, samples):
        label = int(round(float(samples[0]) * 100))
        self.calls.append(label)
        if self.log is not None:
            self.log.append(("infer", label))
        if label in self.fail_labels:
            raise InferenceError(f"backend unavailable at chunk {label}")
        return f"<{label}>"


class GatedRecognizer(LabelRecognizer):
    """Blocks inside the first inference call until released."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def transcribe(self, samples):
        self.started.set()
        self.release.wait(TIMEOUT)
        return super().transcribe(samples)


class FakeEmitter:
    def __init__(self):
        self.alive = True

    def is_alive(self):
        return self.alive


class FakeObserver:
    def __init__(self):
        self.emitters = [FakeEmitter()]
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.handler = handler

    def start(self):
        pass

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


def wait_for(predicate, timeout: float = TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class SchedulerTestCase(unittest.TestCase):

    recognizer_class = LabelRecognizer

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.store = ProgressStore(self.root)
        self.extractor = FakeExtractor()
        self.log: list = []
        self.recognizer = self.recognizer_class()
        self.recognizer.log = self.log
        self.engine = TranscriptionEngine(self.store, self.extractor, self.recognizer,
                                          chunk_samples=CHUNK)
        self.scheduler = JobQueueManager(self.engine)
        self.history: list = []
        self.scheduler.on_state_changed = self._record

    def tearDown(self):
        if isinstance(self.recognizer, GatedRecognizer):
            self.recognizer.release.set()
        self.scheduler.stop_processing(timeout=TIMEOUT)
        self.tmp.cleanup()

    def _record(self, path, state):
        self.history.append((path, state))
        self.log.append(("state", path, state.phase))

    def media(self, name: str, audio: np.ndarray | None = None) -> str:
        path = canonical_path(self.root / name)
        if audio is not None:
            self.extractor.set(path, audio)
        return path

    def progress_history(self, path: str) -> list[float]:
        return [s.progress for p, s in self.history
                if p == path and s.phase == FilePhase.PROCESSING and s.progress > 0]

    def run_until_idle(self):
        self.scheduler.start_processing()
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))


class TestJobQueue(SchedulerTestCase):
    """Test submission, ordering and state transitions."""

    def test_unknown_file_is_idle(self):
        state = self.scheduler.status(self.media("nothing.mp4"))
        self.assertEqual(state.phase, FilePhase.IDLE)
        self.assertEqual(state.progress, 0.0)

    def test_duplicate_submission_queues_once(self):
        a = self.media("a.mp4", make_audio(1, 2))
        self.assertEqual(self.scheduler.submit(a).phase, FilePhase.QUEUED)
        self.assertEqual(self.scheduler.submit(a).phase, FilePhase.QUEUED)
        self.assertEqual(self.scheduler.pending(), [a])

        self.run_until_idle()
        self.assertEqual(self.recognizer.calls, [1, 2])
        self.assertEqual(self.extractor.calls, [a])

    def test_single_file_done(self):
        a = self.media("a.mp4", make_audio(1, 2))
        self.scheduler.submit(a)
        self.run_until_idle()

        state = self.scheduler.status(a)
        self.assertEqual(state.phase, FilePhase.DONE)
        self.assertEqual(state.result, "<1><2>")
        self.assertEqual(state.progress, 0.0)
        self.assertIsNone(state.error)
        self.assertEqual(self.progress_history(a), [0.5, 1.0])
        phases = [s.phase for p, s in self.history if p == a]
        self.assertEqual(phases[0], FilePhase.QUEUED)
        self.assertEqual(phases[1], FilePhase.PROCESSING)
        self.assertEqual(phases[-1], FilePhase.DONE)

    def test_fifo_serialization(self):
        a = self.media("a.mp4", make_audio(1, 2))
        b = self.media("b.mp4", make_audio(11, 2))
        self.scheduler.start_processing()
        self.scheduler.submit(a)
        self.scheduler.submit(b)
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))

        self.assertEqual(self.recognizer.calls, [1, 2, 11, 12])
        a_done = self.log.index(("state", a, FilePhase.DONE))
        first_b_call = self.log.index(("infer", 11))
        self.assertLess(self.log.index(("infer", 2)), a_done)
        self.assertLess(a_done, first_b_call)
        self.assertEqual(self.scheduler.status(b).result, "<11><12>")

    def test_failure_then_retry_resumes(self):
        a = self.media("a.mp4", make_audio(1, 3))
        self.recognizer.fail_labels = {2}
        self.scheduler.submit(a)
        self.run_until_idle()

        state = self.scheduler.status(a)
        self.assertEqual(state.phase, FilePhase.FAILED)
        self.assertIn("backend unavailable", state.error)
        self.assertEqual(state.progress, 0.0)
        self.assertEqual(self.store.load(a), CHUNK)
        self.assertEqual(self.recognizer.calls, [1, 2])

        self.recognizer.fail_labels.clear()
        self.recognizer.calls.clear()
        self.assertEqual(self.scheduler.submit(a).phase, FilePhase.QUEUED)
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))

        state = self.scheduler.status(a)
        self.assertEqual(state.phase, FilePhase.DONE)
        self.assertEqual(state.result, "<1><2><3>")
        self.assertEqual(self.recognizer.calls, [2, 3])

    def test_existing_transcript_skips_work(self):
        a = self.media("a.mp4", make_audio(1, 2))
        self.store.append_transcript(a, "already done")
        self.store.mark_completed(a, 2 * CHUNK)

        state = self.scheduler.submit(a)
        self.assertEqual(state.phase, FilePhase.DONE)
        self.assertEqual(state.result, "already done")
        self.assertEqual(self.scheduler.pending(), [])

        self.run_until_idle()
        self.assertEqual(self.extractor.calls, [])
        self.assertEqual(self.recognizer.calls, [])

    def test_transcript_without_record_counts_as_done(self):
        a = self.media("a.mp4", make_audio(1, 2))
        target = self.store.transcript_path(a)
        target.write_text("from an earlier install", encoding='utf-8')

        self.assertEqual(self.scheduler.submit(a).phase, FilePhase.DONE)
        self.assertEqual(self.scheduler.status(a).result, "from an earlier install")

    def test_partial_transcript_resumes(self):
        a = self.media("a.mp4", make_audio(1, 3))
        self.store.append_transcript(a, "<1>")
        self.store.save(a, CHUNK)

        self.assertEqual(self.scheduler.submit(a).phase, FilePhase.QUEUED)
        self.run_until_idle()
        self.assertEqual(self.recognizer.calls, [2, 3])
        self.assertEqual(self.scheduler.status(a).result, "<1><2><3>")
        self.assertEqual(self.progress_history(a), [2 / 3, 1.0])

    def test_finished_but_unmarked_run_reports_full_progress(self):
        a = self.media("a.mp4", make_audio(1, 2))
        self.store.append_transcript(a, "<1><2>")
        self.store.save(a, 2 * CHUNK)

        self.scheduler.submit(a)
        self.run_until_idle()
        self.assertEqual(self.progress_history(a), [1.0])
        self.assertEqual(self.scheduler.status(a).result, "<1><2>")
        self.assertEqual(self.recognizer.calls, [])

    def test_persistence_failure_keeps_offset(self):
        a = self.media("a.mp4", make_audio(1, 3))
        real_save = self.store.save
        saved: list[int] = []

        def failing_second_save(path, offset, total_samples=None):
            saved.append(offset)
            if len(saved) == 2:
                raise PersistenceError("disk full")
            return real_save(path, offset, total_samples)

        with mock.patch.object(self.store, 'save', side_effect=failing_second_save):
            self.scheduler.submit(a)
            self.run_until_idle()

        state = self.scheduler.status(a)
        self.assertEqual(state.phase, FilePhase.FAILED)
        self.assertEqual(state.error, "disk full")
        self.assertEqual(self.store.load(a), CHUNK)
        self.assertEqual(self.progress_history(a), [1 / 3])
        self.assertEqual(self.recognizer.calls, [1, 2])

        # The unsaved chunk's text is dropped and transcribed again once
        self.recognizer.calls.clear()
        self.scheduler.submit(a)
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))
        self.assertEqual(self.recognizer.calls, [2, 3])
        self.assertEqual(self.scheduler.status(a).result, "<1><2><3>")

    def test_extraction_failure(self):
        a = self.media("a.mp4", make_audio(1, 2))
        self.extractor.fail(a, ExtractionError("No audio tracks found in the media file.",
                                               code=ErrorCode.NO_AUDIO_TRACK))
        self.scheduler.submit(a)
        self.run_until_idle()

        state = self.scheduler.status(a)
        self.assertEqual(state.phase, FilePhase.FAILED)
        self.assertEqual(state.error, "No audio tracks found in the media file.")
        self.assertEqual(self.recognizer.calls, [])

        # Manual retry after the file was fixed
        self.assertEqual(self.scheduler.submit(a).phase, FilePhase.QUEUED)
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))
        self.assertEqual(self.scheduler.status(a).phase, FilePhase.DONE)

    def test_worker_survives_unexpected_error(self):
        a = self.media("a.mp4", make_audio(1, 2))
        b = self.media("b.mp4", make_audio(11, 1))
        self.extractor.fail(a, RuntimeError("decoder exploded"))
        self.scheduler.submit(a)
        self.scheduler.submit(b)
        self.run_until_idle()

        failed = self.scheduler.status(a)
        self.assertEqual(failed.phase, FilePhase.FAILED)
        self.assertIn(ErrorCode.UNEXPECTED, failed.error)
        self.assertIn("decoder exploded", failed.error)
        self.assertEqual(self.scheduler.status(b).phase, FilePhase.DONE)
        self.assertTrue(self.scheduler.is_running())

    def test_observer_errors_do_not_stop_worker(self):
        a = self.media("a.mp4", make_audio(1, 2))

        def broken_observer(path, state):
            raise ValueError("ui went away")

        self.scheduler.on_state_changed = broken_observer
        self.scheduler.submit(a)
        self.run_until_idle()
        self.assertEqual(self.scheduler.status(a).phase, FilePhase.DONE)

    def test_queue_empty_callback(self):
        emptied = threading.Event()
        self.scheduler.on_queue_empty = emptied.set
        self.scheduler.submit(self.media("a.mp4", make_audio(1, 1)))
        self.run_until_idle()
        self.assertTrue(emptied.wait(TIMEOUT))

    def test_all_states_snapshot(self):
        a = self.media("a.mp4", make_audio(1, 1))
        self.scheduler.submit(a)
        snapshot = self.scheduler.all_states()
        self.assertEqual(list(snapshot), [a])
        self.run_until_idle()
        self.assertEqual(snapshot[a].phase, FilePhase.QUEUED)
        self.assertEqual(self.scheduler.all_states()[a].phase, FilePhase.DONE)

    def test_stop_processing(self):
        self.scheduler.start_processing()
        self.assertTrue(self.scheduler.is_running())
        self.scheduler.stop_processing(timeout=TIMEOUT)
        self.assertFalse(self.scheduler.is_running())


class TestJobQueueInFlight(SchedulerTestCase):
    """Behaviour while a job is running."""

    recognizer_class = GatedRecognizer

    def test_submit_while_processing_is_noop(self):
        a = self.media("a.mp4", make_audio(1, 2))
        self.scheduler.start_processing()
        self.scheduler.submit(a)
        self.assertTrue(self.recognizer.started.wait(TIMEOUT))

        self.assertEqual(self.scheduler.current(), a)
        self.assertEqual(self.scheduler.submit(a).phase, FilePhase.PROCESSING)
        self.assertEqual(self.scheduler.pending(), [])

        self.recognizer.release.set()
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))
        self.assertEqual(self.recognizer.calls, [1, 2])

    def test_clear_drops_only_pending(self):
        a = self.media("a.mp4", make_audio(1, 2))
        b = self.media("b.mp4", make_audio(11, 2))
        self.scheduler.start_processing()
        self.scheduler.submit(a)
        self.assertTrue(self.recognizer.started.wait(TIMEOUT))
        self.scheduler.submit(b)

        self.assertEqual(self.scheduler.clear(), 1)
        self.assertEqual(self.scheduler.status(b).phase, FilePhase.IDLE)
        self.assertEqual(self.scheduler.pending(), [])

        self.recognizer.release.set()
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))
        self.assertEqual(self.scheduler.status(a).phase, FilePhase.DONE)
        self.assertNotIn(b, self.extractor.calls)

    def test_restart_after_stop_timed_out(self):
        a = self.media("a.mp4", make_audio(1, 1))
        b = self.media("b.mp4", make_audio(11, 1))
        self.scheduler.start_processing()
        self.scheduler.submit(a)
        self.assertTrue(self.recognizer.started.wait(TIMEOUT))

        # The in-flight job outlives the join timeout
        self.scheduler.stop_processing(timeout=0.1)
        self.scheduler.start_processing()
        self.scheduler.submit(b)
        self.recognizer.release.set()

        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))
        self.assertEqual(self.scheduler.status(a).phase, FilePhase.DONE)
        self.assertEqual(self.scheduler.status(b).phase, FilePhase.DONE)
        self.assertTrue(self.scheduler.is_running())

    def test_restart_after_worker_exited(self):
        a = self.media("a.mp4", make_audio(1, 1))
        self.scheduler.start_processing()
        self.scheduler.stop_processing(timeout=TIMEOUT)
        self.assertFalse(self.scheduler.is_running())

        self.recognizer.release.set()
        self.scheduler.start_processing()
        self.scheduler.submit(a)
        self.assertTrue(self.scheduler.wait_until_idle(TIMEOUT))
        self.assertEqual(self.scheduler.status(a).phase, FilePhase.DONE)

    def test_status_readable_during_processing(self):
        a = self.media("a.mp4", make_audio(1, 2))
        self.scheduler.start_processing()
        self.scheduler.submit(a)
        self.assertTrue(self.recognizer.started.wait(TIMEOUT))
        self.assertEqual(self.scheduler.status(a).phase, FilePhase.PROCESSING)
        self.recognizer.release.set()


class TestDirectoryWatcher(unittest.TestCase):
    """Test discovery with a stub observer; scans are triggered explicitly."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(canonical_path(self.tmp.name))
        self.discovered: list[str] = []
        self.watcher = DirectoryWatcher(debounce_sec=0.05, observer_factory=FakeObserver)
        self.watcher.on_file_discovered = self.discovered.append

    def tearDown(self):
        self.watcher.stop()
        self.tmp.cleanup()

    def touch(self, relative: str) -> str:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"media")
        return str(path)

    def test_initial_scan_filters_extensions(self):
        a = self.touch("a.mp4")
        c = self.touch("sub/deeper/c.MOV")
        self.touch("notes.txt")
        self.touch("README")
        self.touch(".hidden.mp4")
        self.touch(".cache/x.wav")
        self.touch(f"{RESULTS_DIR_NAME}/y.mp3")

        self.watcher.set_root(self.root)
        self.assertEqual(self.watcher.files, sorted([a, c]))
        self.assertEqual(sorted(self.discovered), sorted([a, c]))

    def test_each_file_reported_once(self):
        a = self.touch("a.mp4")
        self.watcher.set_root(self.root)
        self.assertEqual(self.watcher.rescan(), [])
        self.assertEqual(self.watcher.rescan(), [])

        d = self.touch("d.wav")
        self.assertEqual(self.watcher.rescan(), [d])
        self.assertEqual(self.discovered, [a, d])

    def test_reappearing_file_not_reported_again(self):
        a = self.touch("a.mp4")
        self.watcher.set_root(self.root)
        os.unlink(a)
        self.watcher.rescan()
        self.assertEqual(self.watcher.files, [])
        self.touch("a.mp4")
        self.watcher.rescan()
        self.assertEqual(self.watcher.files, [a])
        self.assertEqual(self.discovered, [a])

    def test_set_root_resets_seen_files(self):
        a = self.touch("a.mp4")
        self.watcher.set_root(self.root)
        with tempfile.TemporaryDirectory() as other:
            self.watcher.set_root(other)
            self.assertEqual(self.watcher.files, [])
        self.watcher.set_root(self.root)
        self.assertEqual(self.discovered, [a, a])

    def test_reset(self):
        a = self.touch("a.mp4")
        self.watcher.set_root(self.root)
        self.watcher.reset()
        self.assertEqual(self.watcher.rescan(), [a])

    def test_missing_root_is_not_fatal(self):
        missing = self.root / "not-there"
        self.watcher.set_root(missing)
        self.assertEqual(self.watcher.files, [])
        self.assertEqual(self.watcher.rescan(), [])

        missing.mkdir()
        (missing / "late.mkv").write_bytes(b"media")
        self.watcher.rescan()
        self.assertEqual(self.discovered, [str(missing / "late.mkv")])

    def test_unreadable_root_means_no_new_files(self):
        a = self.touch("a.mp4")
        self.watcher.set_root(self.root)

        def failing_walk(top, onerror=None):
            onerror(PermissionError(13, "Permission denied", top))
            return iter(())

        self.touch("b.mp4")
        with mock.patch("echowrite.core.watcher.os.walk", side_effect=failing_walk):
            self.assertEqual(self.watcher.rescan(), [])
        self.assertEqual(self.watcher.files, [a])

    def test_unreadable_subfolder_skipped(self):
        def partial_walk(top, onerror=None):
            onerror(PermissionError(13, "Permission denied", os.path.join(top, "locked")))
            yield top, [], ["a.mp4"]

        with mock.patch("echowrite.core.watcher.os.walk", side_effect=partial_walk):
            self.watcher.set_root(self.root)
        self.assertEqual(self.discovered, [str(self.root / "a.mp4")])

    def test_discovery_observer_errors_are_contained(self):
        def broken(path):
            raise RuntimeError("queue unavailable")

        self.watcher.on_file_discovered = broken
        self.touch("a.mp4")
        self.watcher.set_root(self.root)
        self.assertEqual(len(self.watcher.files), 1)

    def test_scan_request_triggers_background_scan(self):
        self.watcher.set_root(self.root)
        a = self.touch("a.mp4")
        self.watcher.request_scan()
        self.assertTrue(wait_for(lambda: self.discovered == [a]))

    def test_results_folder_events_ignored(self):
        results = self.root / RESULTS_DIR_NAME
        handler = _ScanRequestHandler(self.watcher, results)
        with mock.patch.object(self.watcher, 'request_scan') as request_scan:
            handler.on_any_event(FileCreatedEvent(str(results / "a.mp4.txt")))
            handler.on_any_event(DirModifiedEvent(str(results)))
            request_scan.assert_not_called()

            handler.on_any_event(FileCreatedEvent(
                str(self.root / f"{RESULTS_DIR_NAME}Old" / "b.mp4")))
            handler.on_any_event(FileCreatedEvent(str(self.root / "c.mp4")))
            self.assertEqual(request_scan.call_count, 2)


class TestWatcherRecovery(unittest.TestCase):
    """Polling and re-observing a root that is missing or was replaced."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(canonical_path(self.tmp.name)) / "watched"
        self.discovered: list[str] = []
        self.observers: list[FakeObserver] = []
        self.watcher = DirectoryWatcher(debounce_sec=0.05, poll_sec=0.05,
                                        observer_factory=self._make_observer)
        self.watcher.on_file_discovered = self.discovered.append

    def tearDown(self):
        self.watcher.stop()
        self.tmp.cleanup()

    def _make_observer(self):
        self.observers.append(FakeObserver())
        return self.observers[-1]

    def _create_root_with(self, name: str):
        # Appears complete in one step, so a poll never sees an empty root
        staging = self.root.parent / "staging"
        staging.mkdir()
        (staging / name).write_bytes(b"media")
        staging.rename(self.root)

    def test_root_created_after_set_root(self):
        self.watcher.set_root(self.root)
        self.assertEqual(self.observers, [])

        self._create_root_with("x.mp4")
        media = self.root / "x.mp4"
        self.assertTrue(wait_for(lambda: self.discovered == [str(media)]))
        self.assertEqual(len(self.observers), 1)

    def test_deleted_root_polled_until_back(self):
        self.root.mkdir()
        self.watcher.set_root(self.root)
        self.assertEqual(len(self.observers), 1)

        os.rmdir(self.root)
        self.watcher.request_scan()
        self.assertTrue(wait_for(lambda: self.observers[0].stopped))

        self._create_root_with("y.wav")
        media = self.root / "y.wav"
        self.assertTrue(wait_for(lambda: self.discovered == [str(media)]))
        self.assertEqual(len(self.observers), 2)

    def test_dead_watch_is_replaced(self):
        self.root.mkdir()
        self.watcher.set_root(self.root)
        self.observers[0].emitters[0].alive = False

        media = self.root / "z.mov"
        media.write_bytes(b"media")
        self.watcher.request_scan()
        self.assertTrue(wait_for(lambda: self.discovered == [str(media)]))
        self.assertTrue(self.observers[0].stopped)
        self.assertEqual(len(self.observers), 2)


class TestWatcherWithFilesystemEvents(unittest.TestCase):
    """Discovery driven by real watchdog events."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(canonical_path(self.tmp.name))
        self.discovered: list[str] = []
        self.watcher = DirectoryWatcher(debounce_sec=0.05)
        self.watcher.on_file_discovered = self.discovered.append

    def tearDown(self):
        self.watcher.stop()
        self.tmp.cleanup()

    def test_new_file_discovered_once(self):
        self.watcher.set_root(self.root)
        if self.watcher._observer is None:
            self.skipTest("filesystem events unavailable")

        media = self.root / "clip.mp4"
        with open(media, 'wb') as f:
            for _ in range(5):
                f.write(b"x" * 1024)
                f.flush()
        self.assertTrue(wait_for(lambda: self.discovered == [str(media)]))
        time.sleep(0.3)
        self.assertEqual(self.discovered, [str(media)])


class TestPipeline(unittest.TestCase):
    """End-to-end scenarios with fake adapters."""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(canonical_path(self.tmp.name))
        self.extractor = FakeExtractor()
        self.recognizer = LabelRecognizer()
        self.pipeline = Pipeline(self.root, self.extractor, self.recognizer,
                                 chunk_samples=CHUNK, debounce_sec=0.05)
        self.discovered: list[str] = []
        self.history: list = []

        def on_discovered(path):
            self.discovered.append(path)
            self.pipeline.submit(path)

        self.pipeline.watcher.on_file_discovered = on_discovered
        self.pipeline.scheduler.on_state_changed = lambda p, s: self.history.append((p, s))

    def tearDown(self):
        self.pipeline.stop(timeout=TIMEOUT)
        self.tmp.cleanup()

    def test_dropped_file_is_transcribed(self):
        self.pipeline.start()
        self.assertEqual(self.pipeline.files, [])

        media = self.root / "a.mp4"
        self.extractor.set(media, make_audio(1, 2))
        media.write_bytes(b"media")
        self.pipeline.watcher.rescan()
        self.assertTrue(self.pipeline.scheduler.wait_until_idle(TIMEOUT))

        path = str(media)
        self.assertEqual(self.discovered, [path])
        state = self.pipeline.status(path)
        self.assertEqual(state.phase, FilePhase.DONE)
        self.assertEqual(state.result, "<1><2>")
        progress = [s.progress for p, s in self.history
                    if p == path and s.phase == FilePhase.PROCESSING and s.progress > 0]
        self.assertEqual(progress, [0.5, 1.0])
        self.assertEqual(self.pipeline.store.read_transcript(path), "<1><2>")
        self.assertTrue((self.root / RESULTS_DIR_NAME / "a.mp4.txt").exists())

    def test_restart_resumes_from_saved_offset(self):
        media = self.root / "a.mp4"
        self.extractor.set(media, make_audio(1, 3))
        media.write_bytes(b"media")
        self.recognizer.fail_labels = {3}
        self.pipeline.start()
        self.pipeline.watcher.rescan()
        self.assertTrue(self.pipeline.scheduler.wait_until_idle(TIMEOUT))
        self.assertEqual(self.pipeline.status(media).phase, FilePhase.FAILED)
        self.pipeline.stop(timeout=TIMEOUT)

        # New process: fresh components over the same folder
        recognizer = LabelRecognizer()
        restarted = Pipeline(self.root, self.extractor, recognizer, chunk_samples=CHUNK)
        try:
            restarted.start()
            self.assertTrue(restarted.scheduler.wait_until_idle(TIMEOUT))
            self.assertEqual(recognizer.calls, [3])
            self.assertEqual(restarted.status(media).result, "<1><2><3>")
        finally:
            restarted.stop(timeout=TIMEOUT)

    def test_set_root_switches_store(self):
        self.pipeline.start()
        with tempfile.TemporaryDirectory() as other:
            other_root = Path(canonical_path(other))
            media = other_root / "b.wav"
            self.extractor.set(media, make_audio(5, 1))
            media.write_bytes(b"media")

            self.pipeline.set_root(other_root)
            self.assertTrue(self.pipeline.scheduler.wait_until_idle(TIMEOUT))
            self.assertEqual(self.pipeline.root, other_root)
            self.assertEqual(self.pipeline.status(media).result, "<5>")
            self.assertTrue((other_root / RESULTS_DIR_NAME / "b.wav.txt").exists())
            self.pipeline.stop(timeout=TIMEOUT)


if __name__ == "__main__":
    unittest.main()
