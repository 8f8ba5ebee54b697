"""
Durable progress store for EchoWrite.

Two kinds of state live under <watched root>/TranscriptionResults/:
  - progress.db: one SQLite table mapping file path -> last completed sample
    offset, together with the transcript byte length committed at that offset.
  - <relative path>.txt: append-only transcript text, one blob per media file.

Every public write is an independent durable operation. The engine appends a
chunk's text first and then saves the offset; the byte length recorded by
save() marks how much of the transcript is committed, so a crash between the
two leaves a tail that discard_uncommitted() truncates before the chunk is
transcribed again.
"""

import os
import sqlite3
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from echowrite.core.constants import (
    RESULTS_DIR_NAME, PROGRESS_DB_NAME, TRANSCRIPT_SUFFIX,
)
from echowrite.core.error_codes import PersistenceError
from echowrite.core.models import ProgressRecord, canonical_path

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS progress (
    path TEXT PRIMARY KEY,
    sample_offset INTEGER NOT NULL DEFAULT 0,
    transcript_bytes INTEGER NOT NULL DEFAULT 0,
    total_samples INTEGER,
    completed INTEGER DEFAULT 0,
    updated_at TEXT
);
"""


class ProgressStore:
    """Resume offsets and transcripts for every file under one watched root."""

    def __init__(self, root: Path | str):
        self._lock = threading.RLock()
        self.set_root(root)

    def set_root(self, root: Path | str):
        """Point the store at another watched root, creating its results folder."""
        with self._lock:
            self.root = Path(canonical_path(root))
            self.results_dir = self.root / RESULTS_DIR_NAME
            self.db_path = self.results_dir / PROGRESS_DB_NAME
            self._ensure_dirs()
            self._migrate()

    def _ensure_dirs(self):
        try:
            self.results_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create results folder {self.results_dir}: {e}") from e

    def _migrate(self):
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(_CREATE_TABLES)
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )

    @contextmanager
    def _connect(self):
        """One connection per operation; commits on success."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open progress database: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA synchronous=FULL")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(f"Progress database error: {e}") from e
        finally:
            conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    def transcript_path(self, path: str | Path) -> Path:
        """
        Derived transcript location: the media file's path relative to the
        watched root plus '.txt'. Files outside the root use their bare name.
        """
        media = Path(canonical_path(path))
        try:
            relative = media.relative_to(self.root)
        except ValueError:
            relative = Path(media.name)
        return self.results_dir / relative.parent / (relative.name + TRANSCRIPT_SUFFIX)

    def _transcript_size(self, path: str) -> int:
        try:
            return self.transcript_path(path).stat().st_size
        except FileNotFoundError:
            return 0
        except OSError as e:
            raise PersistenceError(f"Cannot stat transcript for {path}: {e}") from e

    # ── Progress records ──────────────────────────────────────────────

    def get_record(self, path: str | Path) -> ProgressRecord | None:
        key = canonical_path(path)
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM progress WHERE path = ?", (key,)
            ).fetchone()
        return ProgressRecord(**dict(row)) if row else None

    def has_record(self, path: str | Path) -> bool:
        return self.get_record(path) is not None

    def load(self, path: str | Path) -> int:
        """Last completed sample offset, 0 if the file was never started."""
        record = self.get_record(path)
        return record.sample_offset if record else 0

    def save(self, path: str | Path, offset: int, total_samples: int | None = None):
        """
        Overwrite the resume offset. The transcript's current size is stored
        alongside it as the committed length.
        """
        if offset < 0:
            raise ValueError(f"Sample offset must be >= 0, got {offset}")
        key = canonical_path(path)
        with self._lock:
            committed = self._transcript_size(key)
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO progress
                       (path, sample_offset, transcript_bytes, total_samples,
                        completed, updated_at)
                       VALUES (?, ?, ?, ?, 0, ?)
                       ON CONFLICT(path) DO UPDATE SET
                           sample_offset = excluded.sample_offset,
                           transcript_bytes = excluded.transcript_bytes,
                           total_samples = COALESCE(excluded.total_samples,
                                                    progress.total_samples),
                           updated_at = excluded.updated_at""",
                    (key, offset, committed, total_samples, self._now()),
                )
        logger.debug("Saved offset %d (%d transcript bytes) for %s", offset, committed, key)

    def mark_completed(self, path: str | Path, total_samples: int):
        key = canonical_path(path)
        with self._lock:
            committed = self._transcript_size(key)
            with self._connect() as conn:
                conn.execute(
                    """INSERT INTO progress
                       (path, sample_offset, transcript_bytes, total_samples,
                        completed, updated_at)
                       VALUES (?, ?, ?, ?, 1, ?)
                       ON CONFLICT(path) DO UPDATE SET
                           sample_offset = excluded.sample_offset,
                           transcript_bytes = excluded.transcript_bytes,
                           total_samples = excluded.total_samples,
                           completed = 1,
                           updated_at = excluded.updated_at""",
                    (key, total_samples, committed, total_samples, self._now()),
                )

    def is_completed(self, path: str | Path) -> bool:
        record = self.get_record(path)
        return bool(record and record.completed)

    def reset(self, path: str | Path):
        """Forget all progress for a file and delete its transcript."""
        key = canonical_path(path)
        with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM progress WHERE path = ?", (key,))
            try:
                self.transcript_path(key).unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"Cannot delete transcript for {key}: {e}") from e
        logger.info("Reset progress for %s", key)

    # ── Transcripts ───────────────────────────────────────────────────

    def append_transcript(self, path: str | Path, text: str):
        """Durably append one chunk's text."""
        if not text:
            return
        key = canonical_path(path)
        target = self.transcript_path(key)
        with self._lock:
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, 'a', encoding='utf-8', newline='') as f:
                    f.write(text)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise PersistenceError(f"Cannot append transcript for {key}: {e}") from e

    def read_transcript(self, path: str | Path) -> str | None:
        target = self.transcript_path(path)
        try:
            return target.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(f"Cannot read transcript {target}: {e}") from e

    def discard_uncommitted(self, path: str | Path) -> int:
        """
        Truncate transcript bytes written after the last save(). Returns the
        number of bytes dropped. If the transcript is shorter than the
        committed length it was modified externally; progress restarts from 0.
        """
        key = canonical_path(path)
        with self._lock:
            record = self.get_record(key)
            committed = record.transcript_bytes if record else 0
            size = self._transcript_size(key)

            if size == committed:
                return 0

            if size < committed:
                logger.warning("Transcript for %s is shorter than its committed length "
                               "(%d < %d), restarting from the beginning", key, size, committed)
                self.reset(key)
                return 0

            target = self.transcript_path(key)
            try:
                with open(target, 'r+b') as f:
                    f.truncate(committed)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise PersistenceError(f"Cannot truncate transcript for {key}: {e}") from e

        dropped = size - committed
        logger.warning("Discarded %d uncommitted transcript bytes for %s", dropped, key)
        return dropped
