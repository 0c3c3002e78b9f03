from __future__ import annotations

import time
from datetime import datetime, timezone

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"


def now_ms() -> float:
    """Wall clock in epoch milliseconds; the default clock for dispatch and polling."""
    return time.time() * 1000.0


def to_epoch_ms(value: datetime | int | float | None, default: float | None = None) -> float:
    """Normalise a channel timestamp into epoch milliseconds.

    Aware datetimes are converted directly, naive datetimes are read as UTC
    (Discord and Telegram both report UTC). Bare numbers below 1e11 are taken
    as epoch seconds, larger ones as milliseconds. Anything else falls back to
    ``default`` or the current time.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp() * 1000.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) * 1000.0 if value < 1e11 else float(value)
    return default if default is not None else now_ms()


def format_ms(ms: float) -> str:
    """Format epoch milliseconds using the shared local ISO pattern."""
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).astimezone().strftime(ISO_FORMAT)
