"""
Data models (plain dataclasses) for EchoWrite.
"""

import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from echowrite.core.constants import FilePhase


def canonical_path(path: str | Path) -> str:
    """File identity used everywhere in the pipeline."""
    return str(Path(path).expanduser().resolve())


@dataclass(frozen=True)
class MediaFile:
    path: str                        # canonical path
    name: str
    extension: str

    @classmethod
    def from_path(cls, path: str | Path) -> "MediaFile":
        resolved = Path(canonical_path(path))
        return cls(
            path=str(resolved),
            name=resolved.name,
            extension=resolved.suffix.lstrip(".").lower(),
        )


@dataclass(frozen=True)
class FileState:
    phase: str = FilePhase.IDLE
    progress: float = 0.0
    result: str = ""
    error: Optional[str] = None

    def evolve(self, **changes) -> "FileState":
        return replace(self, **changes)


@dataclass(frozen=True)
class Job:
    path: str
    enqueued_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class ChunkProgress:
    """One completed chunk, as reported by the engine."""
    path: str
    index: int                       # zero-based chunk index
    total: int                       # chunk count for the whole file
    end_offset: int                  # sample offset now saved as resume point
    text: str

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(1.0, (self.index + 1) / self.total)


@dataclass
class ProgressRecord:
    path: str
    sample_offset: int = 0
    transcript_bytes: int = 0
    total_samples: Optional[int] = None
    completed: int = 0
    updated_at: Optional[str] = None
