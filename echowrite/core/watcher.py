"""
Directory watcher.

Filesystem events only request a scan. A scanning thread coalesces bursts,
re-enumerates the whole tree and diffs it against the set of paths already
reported, so every media file is announced exactly once however many events
its arrival produced. While the root cannot be observed (missing, deleted
or replaced) the scanning thread polls instead and re-attaches the observer
once the root is back.
"""

import os
import logging
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from echowrite.core.constants import (
    ALLOWED_EXTENSIONS, RESULTS_DIR_NAME, SCAN_DEBOUNCE_SEC, ROOT_POLL_SEC,
)
from echowrite.core.error_codes import DiscoveryError
from echowrite.core.models import MediaFile, canonical_path

logger = logging.getLogger(__name__)

# Events that never change the directory listing
_IGNORED_EVENT_TYPES = {"opened", "closed_no_write"}


class _ScanRequestHandler(FileSystemEventHandler):
    def __init__(self, watcher: "DirectoryWatcher", results_dir: Path):
        super().__init__()
        self._watcher = watcher
        self._results_dir = str(results_dir)
        self._results_prefix = self._results_dir + os.sep

    def on_any_event(self, event: FileSystemEvent):
        if event.event_type in _IGNORED_EVENT_TYPES:
            return
        # Our own transcript writes
        src = str(event.src_path)
        if src == self._results_dir or src.startswith(self._results_prefix):
            return
        self._watcher.request_scan()


class DirectoryWatcher:
    """Reports media files under a root folder, each one once."""

    def __init__(self, extensions: Iterable[str] = ALLOWED_EXTENSIONS,
                 debounce_sec: float = SCAN_DEBOUNCE_SEC,
                 observer_factory: Callable[[], Observer] = Observer,
                 poll_sec: float = ROOT_POLL_SEC):
        self.extensions = frozenset(ext.lower().lstrip('.') for ext in extensions)
        self.debounce_sec = debounce_sec
        self.poll_sec = poll_sec
        self._observer_factory = observer_factory

        self._lock = threading.RLock()
        self._scan_lock = threading.Lock()
        self.root: Optional[Path] = None
        self._files: set[str] = set()
        self._seen: set[str] = set()

        self._observer: Optional[Observer] = None
        self._scan_thread: Optional[threading.Thread] = None
        self._scan_requested = threading.Event()
        self._stop_event = threading.Event()

        # Callback, receives the canonical path of each newly seen file
        self.on_file_discovered: Optional[Callable[[str], object]] = None

    # ── Public API ────────────────────────────────────────────────────

    @property
    def files(self) -> list[str]:
        """Current media files under the root."""
        with self._lock:
            return sorted(self._files)

    def set_root(self, root: str | Path):
        """Watch a new tree. Forgets every file reported for the previous one."""
        self.stop()
        with self._lock:
            self.root = Path(canonical_path(root))
            self._files = set()
            self._seen = set()
        logger.info("Watching %s", self.root)
        self.rescan()
        self._start()

    def reset(self):
        """Forget reported files; the next scan announces everything again."""
        with self._lock:
            self._files = set()
            self._seen = set()

    def request_scan(self):
        self._scan_requested.set()

    def rescan(self) -> list[str]:
        """Enumerate the tree now. Returns the newly discovered paths."""
        with self._scan_lock:
            with self._lock:
                root = self.root
            if root is None:
                return []

            try:
                current = self._enumerate(root)
            except DiscoveryError as e:
                logger.warning("Scan of %s failed: %s", root, e.message)
                return []

            with self._lock:
                if self.root != root:
                    return []
                self._files = current
                new_files = sorted(current - self._seen)
                self._seen.update(new_files)

            for path in new_files:
                media = MediaFile.from_path(path)
                logger.info("New %s file detected: %s", media.extension, media.name)
                self._notify_file_discovered(path)
            return new_files

    def stop(self):
        """Stop the observer and the scanning thread."""
        self._stop_event.set()
        self._scan_requested.set()
        self._drop_observer()

        thread, self._scan_thread = self._scan_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=5)

    # ── Internals ─────────────────────────────────────────────────────

    def _start(self):
        self._stop_event.clear()
        self._scan_requested.clear()
        self._observe(self.root)

        self._scan_thread = threading.Thread(
            target=self._scan_loop, name="echowrite-scanner", daemon=True)
        self._scan_thread.start()

    def _observe(self, root: Path) -> bool:
        """Attach a filesystem observer to root. False if it cannot be observed yet."""
        if not root.is_dir():
            return False
        observer = self._observer_factory()
        try:
            observer.schedule(_ScanRequestHandler(self, root / RESULTS_DIR_NAME),
                              str(root), recursive=True)
            observer.start()
        except OSError as e:
            logger.warning("Cannot observe %s: %s", root, e)
            return False

        with self._lock:
            if not self._stop_event.is_set() and self.root == root:
                self._observer = observer
                return True
        # Stopped or re-rooted meanwhile
        observer.stop()
        observer.join(timeout=5)
        return False

    def _drop_observer(self):
        with self._lock:
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join(timeout=5)

    def _observer_lost(self) -> bool:
        """True once the observer's watch has ended, e.g. the root was deleted."""
        with self._lock:
            observer = self._observer
        return observer is not None and not all(e.is_alive() for e in observer.emitters)

    def _scan_loop(self):
        while not self._stop_event.is_set():
            with self._lock:
                root = self.root
                observed = self._observer is not None
            # Unobserved roots send no events; poll instead
            requested = self._scan_requested.wait(None if observed else self.poll_sec)
            if self._stop_event.is_set():
                break
            # Let a burst of events settle into one scan
            if requested and self._stop_event.wait(self.debounce_sec):
                break
            self._scan_requested.clear()

            if observed and (not root.is_dir() or self._observer_lost()):
                logger.warning("Lost the watch on %s, polling until it is back", root)
                self._drop_observer()
                observed = False
            if not observed:
                if not root.is_dir():
                    continue
                if self._observe(root):
                    logger.info("Observing %s again", root)

            try:
                self.rescan()
            except Exception as e:
                logger.error("Unexpected scan error: %s", e, exc_info=True)

    def _enumerate(self, root: Path) -> set[str]:
        if not root.is_dir():
            raise DiscoveryError(f"Watched root is not a directory: {root}")

        top = str(root)
        failures: list[OSError] = []
        found: set[str] = set()

        for dirpath, dirnames, filenames in os.walk(top, onerror=failures.append):
            dirnames[:] = [
                d for d in dirnames
                if not d.startswith('.')
                and not (dirpath == top and d == RESULTS_DIR_NAME)
            ]
            for name in filenames:
                if name.startswith('.') or '.' not in name:
                    continue
                if name.rsplit('.', 1)[1].lower() in self.extensions:
                    found.add(canonical_path(os.path.join(dirpath, name)))

        for err in failures:
            if err.filename and os.path.normpath(err.filename) == top:
                raise DiscoveryError(f"Cannot list {top}: {err.strerror}")
            logger.warning("Skipping unreadable folder %s: %s", err.filename, err.strerror)

        return found

    def _notify_file_discovered(self, path: str):
        if not self.on_file_discovered:
            return
        try:
            self.on_file_discovered(path)
        except Exception as e:
            logger.error("Discovery observer failed for %s: %s", path, e, exc_info=True)
