"""Shared utility functions used across voidsync modules."""
from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumerics to hyphens, trim hyphens."""
    return _SLUG_RE.sub("-", (name or "").lower()).strip("-")


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value is None:
        return None
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed), ``None`` on failure."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    except ValueError:
        return None


def to_number(value: Any, default: float = 0.0) -> float:
    """Coerce provider numbers (often strings) to float."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
