"""
Audio extraction using ffmpeg.
Decodes any container with an audio track to mono, 16kHz float samples.
"""

import logging
import subprocess
from pathlib import Path
from typing import Protocol

import numpy as np

from echowrite.core.security_utils import run_subprocess_binary
from echowrite.core.error_codes import ExtractionError
from echowrite.core.constants import (
    ErrorCode, SAMPLE_RATE, CHANNELS, EXTRACTION_TIMEOUT_SEC,
)

logger = logging.getLogger(__name__)

_NO_AUDIO_MARKERS = (
    "does not contain any stream",
    "matches no streams",
    "Output file is empty",
)


class AudioExtractor(Protocol):
    def extract(self, path: str) -> np.ndarray:
        """Return mono float32 samples in [-1, 1] at SAMPLE_RATE."""
        ...


def pcm16_to_float(raw: bytes) -> np.ndarray:
    """Convert little-endian signed 16-bit PCM to float32 in [-1, 1]."""
    usable = len(raw) - (len(raw) % 2)
    pcm = np.frombuffer(raw[:usable], dtype='<i2')
    return pcm.astype(np.float32) / 32768.0


class FfmpegExtractor:
    """Extraction adapter backed by the ffmpeg binary."""

    def __init__(self, ffmpeg: str = "ffmpeg", timeout: int = EXTRACTION_TIMEOUT_SEC):
        self.ffmpeg = ffmpeg
        self.timeout = timeout

    def build_args(self, path: str) -> list[str]:
        return [
            self.ffmpeg,
            "-nostdin",
            "-v", "error",
            "-i", str(path),
            "-vn",                          # drop video
            "-ac", str(CHANNELS),           # mono
            "-ar", str(SAMPLE_RATE),        # 16kHz
            "-f", "s16le",
            "-acodec", "pcm_s16le",
            "-",
        ]

    def extract(self, path: str) -> np.ndarray:
        if not Path(path).is_file():
            raise ExtractionError(f"Media file not found: {path}")

        try:
            result = run_subprocess_binary(self.build_args(path), timeout=self.timeout)
        except FileNotFoundError:
            raise ExtractionError("ffmpeg is not installed or not on PATH")
        except subprocess.TimeoutExpired:
            raise ExtractionError(f"ffmpeg timed out after {self.timeout}s")

        stderr = (result.stderr or b"").decode('utf-8', errors='replace')

        if result.returncode != 0:
            if any(marker in stderr for marker in _NO_AUDIO_MARKERS):
                raise ExtractionError("No audio tracks found in the media file.",
                                      code=ErrorCode.NO_AUDIO_TRACK)
            raise ExtractionError(f"ffmpeg failed (rc={result.returncode}): {stderr[:300]}")

        samples = pcm16_to_float(result.stdout or b"")
        logger.info("Extracted %d samples (%.1fs) from %s",
                    len(samples), len(samples) / SAMPLE_RATE, path)
        return samples
