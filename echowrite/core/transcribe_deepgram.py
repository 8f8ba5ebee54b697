"""
Deepgram Speech-to-Text integration.
Sends one chunk of raw 16-bit PCM per request (pre-recorded mode).
Includes exponential backoff for rate-limit (429) responses.
"""

import json
import logging
import time
import random
from typing import Callable, Protocol

import numpy as np
import requests

from echowrite.core.security_utils import get_api_key
from echowrite.core.error_codes import InferenceError
from echowrite.core.constants import (
    ErrorCode, DEEPGRAM_API_BASE, DEEPGRAM_MODEL, DEEPGRAM_LANGUAGE,
    SAMPLE_RATE, CHANNELS,
)

logger = logging.getLogger(__name__)

DEEPGRAM_PRERECORDED_URL = f"{DEEPGRAM_API_BASE}/listen"

_MAX_RATE_LIMIT_RETRIES = 4
_RATE_LIMIT_BASE_DELAY = 2.0   # seconds, doubles each retry with jitter


class Recognizer(Protocol):
    def transcribe(self, samples: np.ndarray) -> str:
        """Recognized text for one chunk of mono float samples."""
        ...


def samples_to_linear16(samples: np.ndarray) -> bytes:
    """Encode float samples in [-1, 1] as little-endian signed 16-bit PCM."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype('<i2').tobytes()


def extract_transcript_text(deepgram_response: dict) -> str:
    """
    Extract plain text transcript from Deepgram response.
    Uses paragraphs if available, falls back to channels/alternatives.
    """
    try:
        results = deepgram_response.get('results', {})
        alternative = results.get('channels', [{}])[0].get('alternatives', [{}])[0]

        paragraphs = alternative.get('paragraphs', {})
        if paragraphs and paragraphs.get('paragraphs'):
            text_parts = []
            for para in paragraphs['paragraphs']:
                sentences = para.get('sentences', [])
                para_text = ' '.join(s.get('text', '') for s in sentences)
                if para_text.strip():
                    text_parts.append(para_text.strip())
            if text_parts:
                return '\n\n'.join(text_parts)

        transcript = alternative.get('transcript', '')
        if transcript:
            return transcript.strip()

    except (IndexError, KeyError, TypeError, AttributeError) as e:
        logger.warning("Error extracting transcript: %s", e)

    return ""


class DeepgramRecognizer:
    """Inference adapter backed by the Deepgram REST API."""

    def __init__(self, api_key: str | None = None,
                 model: str = DEEPGRAM_MODEL,
                 language: str = DEEPGRAM_LANGUAGE,
                 separator: str = "\n",
                 session: requests.Session | None = None,
                 sleep: Callable[[float], None] = time.sleep):
        self._api_key = api_key
        self.model = model
        self.language = language
        self.separator = separator
        self.session = session or requests.Session()
        self._sleep = sleep

    def _resolve_api_key(self) -> str:
        if not self._api_key:
            self._api_key = get_api_key()
        if not self._api_key:
            raise InferenceError("Deepgram API key not found in Keychain or environment",
                                 retryable=False)
        return self._api_key

    def transcribe(self, samples: np.ndarray) -> str:
        response = self.request(samples_to_linear16(samples))
        text = extract_transcript_text(response)
        return text + self.separator if text else ""

    def request(self, body: bytes) -> dict:
        """
        POST raw PCM to Deepgram. Retries up to 4 times with exponential
        backoff on 429 rate-limit responses. Returns the response dict.
        """
        headers = {
            "Authorization": f"Token {self._resolve_api_key()}",
            "Content-Type": "application/octet-stream",
        }
        params = {
            "model": self.model,
            "language": self.language,
            "encoding": "linear16",
            "sample_rate": str(SAMPLE_RATE),
            "channels": str(CHANNELS),
            "smart_format": "true",
            "punctuate": "true",
        }

        # ~1 min per 10MB, minimum 60s
        timeout_sec = max(60, int(len(body) / (10 * 1024 * 1024) * 60) + 30)

        for attempt in range(_MAX_RATE_LIMIT_RETRIES + 1):
            try:
                resp = self.session.post(
                    DEEPGRAM_PRERECORDED_URL,
                    headers=headers,
                    params=params,
                    data=body,
                    timeout=timeout_sec,
                )
            except requests.exceptions.Timeout:
                raise InferenceError("Deepgram request timed out",
                                     code=ErrorCode.INFERENCE_TIMEOUT)
            except requests.exceptions.ConnectionError:
                raise InferenceError("Network error connecting to Deepgram",
                                     code=ErrorCode.NETWORK_TRANSIENT)
            except requests.exceptions.RequestException as e:
                raise InferenceError(f"Deepgram request failed: {e}")

            if resp.status_code == 504:
                raise InferenceError("Deepgram returned 504 Gateway Timeout",
                                     code=ErrorCode.INFERENCE_TIMEOUT)

            if resp.status_code == 429:
                if attempt < _MAX_RATE_LIMIT_RETRIES:
                    # Exponential backoff with jitter: 2s, 4s, 8s, 16s (+/- 10%)
                    delay = _RATE_LIMIT_BASE_DELAY * (2 ** attempt)
                    delay *= 1 + random.uniform(-0.1, 0.1)
                    logger.warning(
                        "Deepgram rate limited (429), retrying in %.1fs (attempt %d/%d)",
                        delay, attempt + 1, _MAX_RATE_LIMIT_RETRIES,
                    )
                    self._sleep(delay)
                    continue
                raise InferenceError(
                    f"Deepgram rate limited (429) after {_MAX_RATE_LIMIT_RETRIES} retries",
                    code=ErrorCode.NETWORK_TRANSIENT)

            if resp.status_code in (401, 403):
                raise InferenceError("Deepgram rejected the API key", retryable=False)

            if resp.status_code != 200:
                # Sanitize error message (never log API key)
                error_body = resp.text[:300] if resp.text else "No response body"
                raise InferenceError(f"Deepgram returned {resp.status_code}: {error_body}")

            try:
                return resp.json()
            except (json.JSONDecodeError, ValueError):
                raise InferenceError("Failed to parse Deepgram response JSON")

        # Should never reach here
        raise InferenceError("Deepgram request exhausted retries",
                             code=ErrorCode.NETWORK_TRANSIENT)
