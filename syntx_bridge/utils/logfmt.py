from __future__ import annotations

import json
from typing import Any


def quote_value(value: Any) -> str:
    if value is None:
        return "NA"
    # bool first: it is also an int
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (set, frozenset, list, tuple)):
        return quote_value(",".join(str(v) for v in value))
    s = json.dumps(str(value), ensure_ascii=False)
    return s


def fmt(key: str, value: Any) -> str:
    return f"{key}={quote_value(value)}"


def fields(**values: Any) -> str:
    """Render keyword arguments as a logfmt tail, skipping None values."""
    return " ".join(fmt(k, v) for k, v in values.items() if v is not None)


def preview(text: str | None, limit: int = 120) -> str:
    """Single-line, length-capped excerpt of a message body for DEBUG logs."""
    if not text:
        return ""
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 1] + "…"
