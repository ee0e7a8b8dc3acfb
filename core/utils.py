import hashlib
import json
import logging
import math
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)


def is_retryable_error(exc: Exception) -> bool:
    """
    Determine if an exception is retryable.

    Only retries on:
    - Timeouts
    - Server errors (5xx)
    - Connection errors without a response

    Does NOT retry on client errors (4xx).
    """
    if isinstance(exc, requests.Timeout):
        return True

    if isinstance(exc, requests.HTTPError):
        response = getattr(exc, 'response', None)
        if response is not None:
            return response.status_code >= 500
        return True

    if isinstance(exc, requests.RequestException):
        response = getattr(exc, 'response', None)
        if response is not None and 400 <= response.status_code < 500:
            return False
        return True

    return False


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(',', ':'), ensure_ascii=False, default=str)


def content_hash(value: Any) -> str:
    """SHA256 of the canonical JSON form, stable across key order."""
    return hashlib.sha256(canonical_json(value).encode('utf-8')).hexdigest()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 always going up (89.5 -> 90, 89.49 -> 89)."""
    return int(math.floor(float(value) + 0.5))


def strip_null_bytes(value: Any) -> Optional[str]:
    """PostgreSQL text columns reject NUL characters."""
    if value is None:
        return None
    text = str(value).replace('\x00', '')
    return text or None
