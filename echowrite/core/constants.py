"""
Shared constants for EchoWrite.
Single source of truth, imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "EchoWrite"
APP_BUNDLE_ID = "com.local.echowrite"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

DEFAULT_WATCH_ROOT = HOME / "Movies" / APP_NAME
APP_SUPPORT_DIR = HOME / "Library" / "Application Support" / APP_NAME
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
LOG_DIR = HOME / "Library" / "Logs" / APP_NAME

# Persisted state lives under the watched root
RESULTS_DIR_NAME = "TranscriptionResults"
PROGRESS_DB_NAME = "progress.db"
TRANSCRIPT_SUFFIX = ".txt"

# ── Keychain identifiers ─────────────────────────────────────────────
KEYCHAIN_SERVICE = "EchoWrite:Deepgram"
KEYCHAIN_ACCOUNT = "default"
API_KEY_ENV_VAR = "DEEPGRAM_API_KEY"

# ── File phases ───────────────────────────────────────────────────────
class FilePhase:
    IDLE = "Idle"
    QUEUED = "Queued"
    PROCESSING = "Processing"
    DONE = "Done"
    FAILED = "Failed"

ACTIVE_PHASES = {FilePhase.QUEUED, FilePhase.PROCESSING}

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    DISCOVERY = "ERR_DISCOVERY"
    NO_AUDIO_TRACK = "ERR_NO_AUDIO_TRACK"
    EXTRACTION_FAILED = "ERR_EXTRACTION_FAILED"
    PERSISTENCE = "ERR_PERSISTENCE"
    UNEXPECTED = "ERR_UNEXPECTED"

    # Retryable (resume from last saved offset)
    INFERENCE_FAILED = "ERR_INFERENCE_FAILED"
    INFERENCE_TIMEOUT = "ERR_INFERENCE_TIMEOUT"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"

RETRYABLE_ERRORS = {
    ErrorCode.INFERENCE_FAILED,
    ErrorCode.INFERENCE_TIMEOUT,
    ErrorCode.NETWORK_TRANSIENT,
}

MAX_ERROR_MESSAGE_LEN = 2000

# ── Media discovery ───────────────────────────────────────────────────
ALLOWED_EXTENSIONS = frozenset({"mp4", "mp3", "wav", "mkv", "avi", "mov"})
SCAN_DEBOUNCE_SEC = 0.5
ROOT_POLL_SEC = 2.0                 # rescan interval while the root is not observed

# ── Audio pipeline defaults ───────────────────────────────────────────
SAMPLE_RATE = 16000
CHANNELS = 1
CHUNK_SEC = 30
CHUNK_SAMPLES = SAMPLE_RATE * CHUNK_SEC
# Peak amplitude at or below which a decoded file counts as silent
SILENCE_PEAK = 1e-4

EXTRACTION_TIMEOUT_SEC = 1800

# ── Deepgram ──────────────────────────────────────────────────────────
DEEPGRAM_API_BASE = "https://api.deepgram.com/v1"
DEEPGRAM_MODEL = "nova-3"
DEEPGRAM_LANGUAGE = "en"
