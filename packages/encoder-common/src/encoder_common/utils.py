"""
Shared utility functions for the audio encoder.

Timestamp helpers used by the notification channels and the
secret-expiry monitor.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def human_time(ts: datetime | None = None) -> str:
    """Format *ts* (default: now) as local ``YYYY-MM-DD HH:MM:SS``."""
    ts = ts or utc_now()
    return ts.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def iso_utc(ts: datetime | None = None) -> str:
    """Format *ts* (default: now) as an ISO-8601 UTC string, second precision."""
    ts = ts or utc_now()
    return ts.astimezone(timezone.utc).isoformat(timespec="seconds")
