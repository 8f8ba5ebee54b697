"""
Standardised error handling for EchoWrite.
"""

from echowrite.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")


class DiscoveryError(JobError):
    """Scanning the watched tree failed. Logged, retried on the next scan."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.DISCOVERY, message, retryable=True)


class TranscriptionError(JobError):
    """A single transcription run failed."""


class ExtractionError(TranscriptionError):
    """The container could not be decoded into audio samples."""

    def __init__(self, message: str, code: str = ErrorCode.EXTRACTION_FAILED):
        super().__init__(code, message, retryable=False)


class InferenceError(TranscriptionError):
    """The recognizer failed on a chunk. The next run resumes after the last saved chunk."""

    def __init__(self, message: str, code: str = ErrorCode.INFERENCE_FAILED,
                 retryable: bool | None = None):
        super().__init__(code, message, retryable)


class PersistenceError(TranscriptionError):
    """A durable write to the progress store failed."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.PERSISTENCE, message, retryable=False)


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS
