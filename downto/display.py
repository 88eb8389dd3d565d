"""Presentation-only labels derived from stored instants. Never persisted."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional


def expires_in_label(expires_at: Optional[datetime], now: datetime) -> str:
    """Bucket the time left before ``expires_at`` into "open", "3h", "12m" or "expired"."""

    if expires_at is None:
        return "open"
    remaining = expires_at - now
    if remaining <= timedelta(0):
        return "expired"
    hours, rest = divmod(int(remaining.total_seconds()), 3600)
    minutes = rest // 60
    if hours > 0:
        return f"{hours}h"
    if minutes > 0:
        return f"{minutes}m"
    return "expired"


def expiry_percent(created_at: datetime, expires_at: Optional[datetime], now: datetime) -> float:
    if expires_at is None:
        return 0.0
    total = (expires_at - created_at).total_seconds()
    if total <= 0:
        return 100.0
    elapsed = (now - created_at).total_seconds()
    return round(min(100.0, max(0.0, elapsed / total * 100.0)), 2)


def date_label(day: date, at: Optional[str] = None) -> str:
    """Format a locked date like "Sun, Mar 1" or "Sun, Mar 1 at 7:30 PM"."""

    label = f"{day.strftime('%a, %b')} {day.day}"
    if at:
        clock = datetime.strptime(at, "%H:%M")
        hour = clock.hour % 12 or 12
        suffix = "AM" if clock.hour < 12 else "PM"
        label = f"{label} at {hour}:{clock.minute:02d} {suffix}"
    return label


__all__ = ["expires_in_label", "expiry_percent", "date_label"]
