"""Journal decay rules.

Only the expiry boundary is binding: a journal memory created strictly
before ``now - window`` is expired. Core memories never expire. The
opacity curve is presentation only.
"""

from datetime import datetime, timedelta
from typing import Optional

from helixmem.types import DEFAULT_JOURNAL_WINDOW, Memory, now_utc

MIN_OPACITY = 0.2


def age_in_days(memory: Memory, now: Optional[datetime] = None) -> int:
    """Whole days since the memory was created."""
    now = now or now_utc()
    if memory.created_at is None:
        return 0
    return max(0, (now - memory.created_at).days)


def expiry_cutoff(now: Optional[datetime] = None, window: timedelta = DEFAULT_JOURNAL_WINDOW) -> datetime:
    """Journal entries created before this instant are expired."""
    return (now or now_utc()) - window


def is_expired(
    memory: Memory,
    now: Optional[datetime] = None,
    window: timedelta = DEFAULT_JOURNAL_WINDOW,
) -> bool:
    if not memory.is_journal or memory.created_at is None:
        return False
    return memory.created_at < expiry_cutoff(now, window)


def journal_opacity(
    memory: Memory,
    now: Optional[datetime] = None,
    window: timedelta = DEFAULT_JOURNAL_WINDOW,
) -> float:
    """Linear fade from 1.0 to MIN_OPACITY across the journal window."""
    if not memory.is_journal or memory.created_at is None:
        return 1.0
    now = now or now_utc()
    fraction = (now - memory.created_at) / window
    fraction = min(max(fraction, 0.0), 1.0)
    return round(1.0 - fraction * (1.0 - MIN_OPACITY), 3)
