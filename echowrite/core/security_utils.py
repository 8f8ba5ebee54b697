"""
Security utilities for EchoWrite.
- Safe subprocess execution (argument arrays only)
- API key lookup: macOS Keychain, then environment
"""

import os
import subprocess
import logging

from echowrite.core.constants import (
    KEYCHAIN_SERVICE,
    KEYCHAIN_ACCOUNT,
    API_KEY_ENV_VAR,
)

logger = logging.getLogger(__name__)


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False: remove any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr as text."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        timeout=timeout,
        **kwargs,
    )


def run_subprocess_binary(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr as raw bytes."""
    return run_subprocess(
        args,
        capture_output=True,
        timeout=timeout,
        **kwargs,
    )


# ── API key lookup ────────────────────────────────────────────────────

def keychain_get_api_key() -> str | None:
    """Retrieve the Deepgram API key from macOS Keychain."""
    try:
        result = run_subprocess_capture([
            "security", "find-generic-password",
            "-s", KEYCHAIN_SERVICE,
            "-a", KEYCHAIN_ACCOUNT,
            "-w",  # print password only
        ], timeout=10)
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    except Exception as e:
        logger.warning("Keychain read failed: %s", type(e).__name__)
    return None


def keychain_set_api_key(api_key: str) -> bool:
    """Store or update the Deepgram API key in macOS Keychain."""
    try:
        result = run_subprocess_capture([
            "security", "add-generic-password",
            "-s", KEYCHAIN_SERVICE,
            "-a", KEYCHAIN_ACCOUNT,
            "-w", api_key,
            "-U",  # update if exists
        ], timeout=10)
        return result.returncode == 0
    except Exception as e:
        logger.error("Keychain write failed: %s", type(e).__name__)
        return False


def get_api_key() -> str | None:
    """Keychain first, then the DEEPGRAM_API_KEY environment variable."""
    api_key = keychain_get_api_key()
    if api_key:
        return api_key
    api_key = os.environ.get(API_KEY_ENV_VAR, "").strip()
    return api_key or None
