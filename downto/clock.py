"""Time helpers. All instants handled by Downto are timezone-aware UTC."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Optional, Union

Clock = Callable[[], datetime]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_day(value: Union[str, date, None]) -> Optional[date]:
    """Accept ``YYYY-MM-DD`` text or a ``date``; raise ``ValueError`` otherwise."""

    if value is None or isinstance(value, date):
        return value
    return datetime.strptime(value, "%Y-%m-%d").date()


def parse_clock_time(value: Optional[str]) -> Optional[str]:
    """Normalize ``H:MM``/``HH:MM`` to ``HH:MM``; raise ``ValueError`` otherwise."""

    if value is None or value == "":
        return None
    return datetime.strptime(value.strip(), "%H:%M").strftime("%H:%M")


__all__ = ["Clock", "now_utc", "parse_day", "parse_clock_time"]
