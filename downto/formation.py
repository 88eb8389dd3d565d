"""Squad formation from an interest check or an event."""

from __future__ import annotations

import logging
import random
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from .clock import Clock, now_utc
from .db import Database, new_id
from .errors import AlreadyExists, CapacityExceeded, Conflict, Forbidden, InvalidInput, NotFound
from .lifecycle import locked_expiry
from .models import InterestCheck, NotificationKind, Squad
from .notifier import NotificationDispatcher

logger = logging.getLogger(__name__)

SQUAD_NAME_LENGTH = 30
FORMATION_ATTEMPTS = 3

SQUAD_OPENERS = [
    "i cleared my schedule. i didn't have anything but still",
    "i just told my mom i have plans",
    "already mentally there tbh",
    "i already know what i'm wearing",
    "if anyone flakes i'm airing it out",
    "screenshot taken. evidence logged.",
    "flaking is a federal offense btw",
    "the universe aligned for this exact moment",
    "historians will write about this squad",
    "this is our origin story",
    "cool. no turning back now",
    "so this is really happening huh",
    "ok bet",
    "LETS GOOOOO",
    "everybody act normal",
    "this energy is immaculate",
]

TITLE_OPENERS = [
    "I CANT WAIT TO {upper} WITH YALL",
    "we are about to {title} SO HARD",
    "{title} isn't ready for us",
    "{title} will never be the same after we're done with it",
]


def squad_name(title: str) -> str:
    if len(title) > SQUAD_NAME_LENGTH:
        return title[:SQUAD_NAME_LENGTH] + "..."
    return title


def pick_opener(title: Optional[str], rng: random.Random) -> str:
    """Pick the first chat line; about a quarter of the time it riffs on the plan's title."""

    if title and rng.random() < 0.25:
        template = rng.choice(TITLE_OPENERS)
        return template.format(title=title, upper=title.upper())
    return rng.choice(SQUAD_OPENERS)


def dedupe(user_ids: Iterable[str], exclude: Iterable[str] = ()) -> List[str]:
    skip = set(exclude)
    seen: List[str] = []
    for user_id in user_ids:
        if user_id and user_id not in skip and user_id not in seen:
            seen.append(user_id)
    return seen


def _initial_timer(day: Optional[date], now: datetime) -> Tuple[Optional[datetime], Optional[date]]:
    """Start the squad's timer from a date the plan already carries, if it is still ahead."""

    if day is None:
        return None, None
    expires_at = locked_expiry(day)
    if expires_at <= now:
        return None, None
    return expires_at, day


class FormationService:
    def __init__(
        self,
        database: Database,
        dispatcher: NotificationDispatcher,
        clock: Clock = now_utc,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.database = database
        self.dispatcher = dispatcher
        self.clock = clock
        self.rng = rng or random.Random()

    async def form_squad(
        self,
        initiator_id: str,
        member_ids: Sequence[str],
        check_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> Squad:
        """Create (or return the existing) squad for a check, or a new squad for an event."""

        if (check_id is None) == (event_id is None):
            raise InvalidInput("exactly one of check_id or event_id is required")
        if check_id is not None:
            return await self._form_from_check(check_id, initiator_id, member_ids)
        return await self._form_from_event(event_id, initiator_id, member_ids)

    async def _form_from_check(
        self, check_id: str, initiator_id: str, member_ids: Sequence[str]
    ) -> Squad:
        check = self.database.get_check(check_id)
        if check is None:
            raise NotFound(f"check {check_id} not found")

        self._authorize(check, initiator_id)
        existing = self.database.get_squad_by_check(check_id)
        if existing is not None:
            return existing

        reserved = dedupe([initiator_id, check.author_id])
        selected = dedupe(member_ids, exclude=reserved)
        room = check.max_squad_size - len(reserved)
        if len(selected) > room:
            raise CapacityExceeded(
                f"selected {len(selected)} members but only {room} spots are left "
                f"(max squad size {check.max_squad_size})"
            )

        now = self.clock()
        expires_at, locked_date = _initial_timer(check.event_date, now)
        for _ in range(FORMATION_ATTEMPTS):
            squad = Squad(
                id=new_id(),
                name=squad_name(check.text),
                created_at=now,
                check_id=check.id,
                created_by=initiator_id,
                expires_at=expires_at,
                locked_date=locked_date,
            )
            try:
                self.database.insert_squad(
                    squad,
                    [*reserved, *selected],
                    self._opening_lines(check.text, initiator_id),
                )
            except AlreadyExists:
                winner = self.database.get_squad_by_check(check_id)
                if winner is not None:
                    logger.info("squad for check %s already formed as %s", check_id, winner.id)
                    return winner
                continue
            logger.info("squad %s formed from check %s by %s", squad.id, check_id, initiator_id)
            self._invite(squad, [*reserved, *selected], initiator_id, check.text)
            return squad
        raise Conflict(f"could not settle the squad for check {check_id}")

    async def _form_from_event(
        self, event_id: str, initiator_id: str, member_ids: Sequence[str]
    ) -> Squad:
        event = self.database.get_event(event_id)
        if event is None:
            raise NotFound(f"event {event_id} not found")

        selected = dedupe(member_ids, exclude=[initiator_id])
        now = self.clock()
        expires_at, locked_date = _initial_timer(event.event_date, now)
        squad = Squad(
            id=new_id(),
            name=squad_name(event.title),
            created_at=now,
            event_id=event.id,
            created_by=initiator_id,
            expires_at=expires_at,
            locked_date=locked_date,
        )
        self.database.insert_squad(
            squad, [initiator_id, *selected], self._opening_lines(event.title, initiator_id)
        )
        logger.info("squad %s formed from event %s by %s", squad.id, event_id, initiator_id)
        self._invite(squad, [initiator_id, *selected], initiator_id, event.title)
        return squad

    def _authorize(self, check: InterestCheck, initiator_id: str) -> None:
        if initiator_id == check.author_id:
            return
        if not self.database.get_responses([check.id])[check.id]:
            raise Forbidden("only the author can start a squad before anyone responds")

    def _opening_lines(self, title: str, initiator_id: str) -> List[Tuple[Optional[str], str, bool]]:
        return [
            (None, f'Squad formed for "{title}"', True),
            (initiator_id, pick_opener(title, self.rng), False),
        ]

    def _invite(self, squad: Squad, member_ids: Iterable[str], initiator_id: str, title: str) -> None:
        for user_id in member_ids:
            if user_id == initiator_id:
                continue
            self.dispatcher.dispatch(
                user_id,
                NotificationKind.SQUAD_INVITE,
                {
                    "title": "You're in a squad",
                    "body": title,
                    "related_squad_id": squad.id,
                    "related_check_id": squad.check_id,
                },
            )


__all__ = ["FormationService", "squad_name", "pick_opener", "dedupe"]
