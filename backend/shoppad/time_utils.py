from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


# Wire timestamps carry milliseconds; pollers echo them back as cursors
WIRE_RESOLUTION = timedelta(milliseconds=1)


def utcnow() -> datetime:
    """Server clock in UTC, tz-stripped. Every stored timestamp uses this."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(dt: datetime) -> datetime:
    # Naive values are already UTC by convention
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a client-supplied ISO-8601 timestamp into the stored representation.

    Blank input gives None. A trailing Z or an explicit offset is honoured;
    a bare timestamp is taken as UTC. Raises ValueError when unparseable.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text)).replace(tzinfo=None)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """`2026-10-19T08:15:02.417Z` style, or None."""
    if dt is None:
        return None
    stamp = _as_utc(dt).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")
