"""JSON/text helpers for bounded logging output."""

from __future__ import annotations

import json
from typing import Any


def to_bounded_json(payload: Any, max_len: int = 8000) -> str:
    """Serialize arbitrary values into bounded JSON-like text for logging."""
    try:
        raw = json.dumps(payload, ensure_ascii=False)
    except Exception:
        raw = repr(payload)
    if len(raw) > max_len:
        return raw[:max_len] + "...<truncated>"
    return raw


def truncate_text(text: str, max_len: int = 200) -> str:
    """Return at most `max_len` leading characters of `text`."""
    return text[:max_len]


def secret_preview(value: str | None, max_chars: int = 10) -> str:
    """Render a partial preview of a credential for log lines.

    At most half of the value is shown, so short secrets are never echoed whole.
    """
    if not value:
        return "none"
    shown = min(max_chars, len(value) // 2)
    return value[:shown] + "..."
