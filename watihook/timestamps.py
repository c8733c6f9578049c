"""
Timestamp normalization for provider events.

Every value is turned into milliseconds since the Unix epoch. Values that
cannot be recovered fall back to the ingestion time: this is lossy, so each
fallback is logged as a warning and counted in `timestamp_fallback_total`.
"""

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any

from watihook.metrics import record_timestamp_fallback

logger = logging.getLogger(__name__)

# Largest 10-digit value; anything above is already millisecond resolution
SECONDS_BOUNDARY = 9_999_999_999

# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
MAX_EPOCH_MS = 253_402_300_799_999

_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")


def now_ms() -> int:
    return int(time.time() * 1000)


def from_epoch_number(value: float) -> int:
    """
    Epoch value in seconds or milliseconds, decided by magnitude.
    Raises ValueError past the representable calendar range.
    """
    millis = int(value) if value > SECONDS_BOUNDARY else int(value * 1000)
    if millis > MAX_EPOCH_MS:
        raise ValueError(f"epoch value out of range: {value}")
    return millis


def from_datetime(value: datetime) -> int:
    """Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def parse_iso(value: str) -> int:
    """Parse an ISO-8601 / calendar string. Raises ValueError if unparseable."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return from_datetime(datetime.fromisoformat(text))


def normalize(value: Any, field: str = "timestamp") -> int:
    """
    Convert a provider timestamp into epoch milliseconds.

    Rules, in order:
        1. datetime objects (including provider-native subclasses) convert directly
        2. numbers and numeric strings: > 10 digits are milliseconds, otherwise seconds
        3. other strings are parsed as ISO-8601
        4. anything else (missing, empty, unparseable) falls back to now

    Never raises.

    Args:
        value: Raw timestamp from the event
        field: Event field name, used to label fallback warnings and metrics
    """
    if isinstance(value, datetime):
        return from_datetime(value)

    try:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if value >= 0:
                return from_epoch_number(value)
        elif isinstance(value, str) and value.strip():
            text = value.strip()
            if _NUMERIC_RE.match(text):
                return from_epoch_number(float(text))
            return parse_iso(text)
    except (ValueError, OverflowError):
        pass

    fallback = now_ms()
    logger.warning(
        "timestamp_fallback",
        extra={"field": field, "raw_value": repr(value), "fallback_ms": fallback},
    )
    record_timestamp_fallback(field)
    return fallback
