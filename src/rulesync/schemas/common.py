from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response model for health endpoints."""

    status: str = Field(..., description="High-level health status string (e.g., 'ok').")
    message: str = Field(..., description="Human-readable status message.")
    timestamp: datetime = Field(..., description="UTC timestamp at time of response.")


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    detail: str = Field(..., description="Human-readable error details.")
    code: Optional[str] = Field(default=None, description="Optional machine-readable error code.")
    meta: Dict[str, Any] = Field(default_factory=dict, description="Optional metadata for debugging.")


# PUBLIC_INTERFACE
def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


_DURATION_RE = re.compile(
    r"^(?:(?P<y>\d+)y)?(?:(?P<w>\d+)w)?(?:(?P<d>\d+)d)?(?:(?P<h>\d+)h)?"
    r"(?:(?P<m>\d+)m)?(?:(?P<s>\d+)s)?(?:(?P<ms>\d+)ms)?$"
)

# Units in rendering order, expressed in milliseconds.
_DURATION_UNITS = (
    ("y", 365 * 24 * 3600 * 1000),
    ("w", 7 * 24 * 3600 * 1000),
    ("d", 24 * 3600 * 1000),
    ("h", 3600 * 1000),
    ("m", 60 * 1000),
    ("s", 1000),
    ("ms", 1),
)


# PUBLIC_INTERFACE
def parse_duration(raw: str) -> timedelta:
    """
    Parse a Prometheus-style duration string ("1h30m", "30s", "500ms") into a timedelta.

    "0" is accepted as a zero duration. Raises ValueError for anything else that does not match.
    """
    text = (raw or "").strip()
    if text == "0":
        return timedelta(0)
    m = _DURATION_RE.match(text)
    if not text or not m:
        raise ValueError(f"not a valid duration string: {raw!r}")

    total_ms = 0
    for unit, factor in _DURATION_UNITS:
        value = m.group(unit)
        if value:
            total_ms += int(value) * factor
    return timedelta(milliseconds=total_ms)


# PUBLIC_INTERFACE
def format_duration(value: timedelta) -> str:
    """Render a timedelta in canonical Prometheus duration form, largest units first ("0s" for zero)."""
    remaining = int(round(value.total_seconds() * 1000))
    if remaining <= 0:
        return "0s"
    parts = []
    for unit, factor in _DURATION_UNITS:
        count, remaining = divmod(remaining, factor)
        if count:
            parts.append(f"{count}{unit}")
    return "".join(parts)
