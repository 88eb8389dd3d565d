"""Squad lifecycle rules.

A squad has no stored state column. Its state is a function of
``expires_at``, ``warned_at`` and ``grace_started_at`` (plus ``locked_date``
and the originating check's ``expires_at`` for grace), computed here and
nowhere else. The sweep asks :func:`due_transitions` what to do; status
reporting asks :func:`derive_state` what to show.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import List, Optional

from .models import Squad, SquadState

WARNING_WINDOW = timedelta(hours=1)
LOCKED_DAY_SPAN = timedelta(hours=24)

GRACE_MESSAGE = "Timer's up — set a date to lock it in"
WARNING_MESSAGE = "This chat expires in 1 hour"


class Transition(str, Enum):
    """Sweep steps, declared in the order they must run."""

    GRACE = "grace"
    WARN = "warn"
    EXPIRE = "expire"


def is_expired(squad: Squad, now: datetime) -> bool:
    return squad.expires_at is not None and squad.expires_at < now


def grace_due(squad: Squad, check_expires_at: Optional[datetime], now: datetime) -> bool:
    return (
        squad.check_id is not None
        and squad.grace_started_at is None
        and squad.locked_date is None
        and squad.expires_at is not None
        and check_expires_at is not None
        and check_expires_at < now
    )


def warning_due(squad: Squad, now: datetime) -> bool:
    return (
        squad.warned_at is None
        and squad.expires_at is not None
        and now < squad.expires_at <= now + WARNING_WINDOW
    )


def due_transitions(
    squad: Squad, check_expires_at: Optional[datetime], now: datetime
) -> List[Transition]:
    """Return the transitions this squad qualifies for, in execution order."""

    due: List[Transition] = []
    if grace_due(squad, check_expires_at, now):
        due.append(Transition.GRACE)
    if warning_due(squad, now):
        due.append(Transition.WARN)
    if is_expired(squad, now):
        due.append(Transition.EXPIRE)
    return due


def derive_state(
    squad: Squad, check_expires_at: Optional[datetime], now: datetime
) -> SquadState:
    if is_expired(squad, now):
        return SquadState.EXPIRED
    if squad.grace_started_at is not None or grace_due(squad, check_expires_at, now):
        return SquadState.GRACE
    if squad.warned_at is not None or warning_due(squad, now):
        return SquadState.WARNED
    return SquadState.ACTIVE


def locked_expiry(day: date) -> datetime:
    """A locked squad lives through the whole locked day (UTC)."""

    return datetime.combine(day, time.min, tzinfo=timezone.utc) + LOCKED_DAY_SPAN


__all__ = [
    "WARNING_WINDOW",
    "LOCKED_DAY_SPAN",
    "GRACE_MESSAGE",
    "WARNING_MESSAGE",
    "Transition",
    "is_expired",
    "grace_due",
    "warning_due",
    "due_transitions",
    "derive_state",
    "locked_expiry",
]
