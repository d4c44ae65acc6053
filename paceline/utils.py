import json
import random
from typing import Any

from pydantic_core import PydanticSerializationError, to_json

MAX_BACKOFF_SECONDS = 30.0
JITTER_RATIO = 0.1


def calculate_backoff(attempt: int, base_delay: float) -> float:
    """
    Exponential backoff with jitter, in seconds.

    delay = min(base * 2^attempt + jitter, 30s), where jitter is a random
    value up to 10% of the exponential term.
    """
    exponential = base_delay * (2**attempt)
    jitter = random.random() * exponential * JITTER_RATIO
    return min(exponential + jitter, MAX_BACKOFF_SECONDS)


def serialize_body(body: Any) -> str:
    """Compact JSON form of a request body; "undefined" when absent."""
    if body is None:
        return "undefined"
    return json.dumps(body, separators=(",", ":"), default=str)


def request_fingerprint(method: str, url: str, body: Any = None) -> str:
    """
    Build the cache key / dedup fingerprint for a request.

    Format: "{METHOD}:{fullURL}:{JSON(body)}"
    """
    return f"{method.upper()}:{url}:{serialize_body(body)}"


def estimate_size(value: Any) -> int:
    """
    Best-effort byte size of a value's JSON encoding.

    Returns 0 when the value cannot be serialized.
    """
    try:
        return len(to_json(value))
    except (PydanticSerializationError, TypeError, ValueError):
        return 0
