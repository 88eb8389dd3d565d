"""Member actions that move a squad's timer: lock a date, clear it, extend."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Optional, Union

from .clock import Clock, now_utc, parse_clock_time, parse_day
from .db import Database
from .display import date_label
from .errors import Forbidden, InvalidInput, NotFound, StaleDate
from .lifecycle import locked_expiry
from .membership import MembershipService

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION_DAYS = 7
ANONYMOUS_ACTOR = "Someone"


class DateLockService:
    def __init__(
        self,
        database: Database,
        membership: MembershipService,
        clock: Clock = now_utc,
    ) -> None:
        self.database = database
        self.membership = membership
        self.clock = clock

    def set_date(
        self,
        squad_id: str,
        user_id: str,
        day: Union[str, date],
        at: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> datetime:
        """Lock ``day`` in for the squad and return the recomputed ``expires_at``.

        The squad lives through the whole locked day, its warning and grace
        stamps are cleared, and the date is mirrored onto the originating check.
        """

        self.membership.require_member(squad_id, user_id)
        try:
            locked = parse_day(day)
            clock_time = parse_clock_time(at)
        except (TypeError, ValueError) as exc:
            raise InvalidInput("date must be YYYY-MM-DD and time HH:MM") from exc
        if locked is None:
            raise InvalidInput("date is required")

        now = self.clock()
        if locked < now.date():
            raise StaleDate(f"{locked.isoformat()} is already in the past")

        text = f"{actor_name or ANONYMOUS_ACTOR} locked in {date_label(locked, clock_time)}"
        squad = self.database.lock_date(squad_id, locked, clock_time, locked_expiry(locked), text, now)
        if squad is None:
            raise NotFound(f"squad {squad_id} not found")
        logger.info("squad %s locked to %s by %s", squad_id, locked.isoformat(), user_id)
        return squad.expires_at

    def clear_date(self, squad_id: str, user_id: str, actor_name: Optional[str] = None) -> None:
        """Drop the locked date. Only the originating check's author may do this; the timer is kept."""

        squad = self.membership.get_squad(squad_id)
        if squad.check_id is None:
            raise Forbidden("this squad has no check author who could clear its date")
        check = self.database.get_check(squad.check_id)
        if check is None:
            raise NotFound(f"check {squad.check_id} not found")
        if check.author_id != user_id:
            raise Forbidden("only the check's author can clear the date")

        text = f"{actor_name or ANONYMOUS_ACTOR} cleared the date"
        if not self.database.clear_date(squad_id, text, self.clock()):
            raise NotFound(f"squad {squad_id} not found")
        logger.info("squad %s date cleared by %s", squad_id, user_id)

    def extend_squad(
        self,
        squad_id: str,
        user_id: str,
        days: int = DEFAULT_EXTENSION_DAYS,
        actor_name: Optional[str] = None,
    ) -> datetime:
        if days < 1:
            raise InvalidInput("days must be at least 1")
        self.membership.require_member(squad_id, user_id)

        text = f"{actor_name or ANONYMOUS_ACTOR} extended the squad +{days} days"
        expires_at = self.database.extend_squad(squad_id, timedelta(days=days), text, self.clock())
        if expires_at is None:
            raise NotFound(f"squad {squad_id} not found")
        logger.info("squad %s extended %s days by %s", squad_id, days, user_id)
        return expires_at


__all__ = ["DateLockService", "DEFAULT_EXTENSION_DAYS"]
