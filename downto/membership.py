"""Joining, leaving, chatting and sorting out logistics in squads."""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional

from .clock import Clock, now_utc
from .db import SQUAD_LOGISTICS_FIELDS, Database
from .errors import AlreadyExists, Forbidden, InvalidInput, NotFound
from .lifecycle import derive_state
from .models import Message, Squad, SquadDetail, SquadState

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
MAX_LOGISTICS_LENGTH = 200


class MembershipService:
    def __init__(self, database: Database, clock: Clock = now_utc) -> None:
        self.database = database
        self.clock = clock

    def get_squad(self, squad_id: str) -> Squad:
        squad = self.database.get_squad(squad_id)
        if squad is None:
            raise NotFound(f"squad {squad_id} not found")
        return squad

    def require_member(self, squad_id: str, user_id: str) -> Squad:
        squad = self.get_squad(squad_id)
        if not self.database.is_member(squad_id, user_id):
            raise Forbidden("not a squad member")
        return squad

    def join(self, squad_id: str, user_id: str) -> None:
        """Add ``user_id`` to the squad. Joining twice is a silent success."""

        self.get_squad(squad_id)
        try:
            self.database.add_member(squad_id, user_id, self.clock())
        except AlreadyExists:
            logger.debug("%s already in squad %s", user_id, squad_id)
            return
        logger.info("%s joined squad %s", user_id, squad_id)

    def leave(self, squad_id: str, user_id: str) -> None:
        """Remove the membership row. An emptied squad stays until its timer runs out."""

        self.get_squad(squad_id)
        if self.database.remove_member(squad_id, user_id):
            logger.info("%s left squad %s", user_id, squad_id)

    def post_message(self, squad_id: str, user_id: str, text: str) -> Message:
        cleaned = (text or "").strip()
        if not cleaned:
            raise InvalidInput("message must not be empty")
        if len(cleaned) > MAX_MESSAGE_LENGTH:
            raise InvalidInput(f"message must be at most {MAX_MESSAGE_LENGTH} characters")
        self.require_member(squad_id, user_id)
        return self.database.append_message(squad_id, user_id, cleaned, self.clock())

    def update_logistics(self, squad_id: str, user_id: str, patch: Mapping[str, Optional[str]]) -> Squad:
        """Set or clear the meeting spot, arrival time and transport notes. Members only.

        Values are free text; blank values clear the field.
        """

        fields: Dict[str, Optional[str]] = {}
        for name, value in patch.items():
            if name not in SQUAD_LOGISTICS_FIELDS:
                raise InvalidInput(f"{name} is not a logistics field")
            if value is not None and not isinstance(value, str):
                raise InvalidInput(f"{name} must be text")
            cleaned = (value or "").strip()
            if len(cleaned) > MAX_LOGISTICS_LENGTH:
                raise InvalidInput(f"{name} must be at most {MAX_LOGISTICS_LENGTH} characters")
            fields[name] = cleaned or None

        self.require_member(squad_id, user_id)
        squad = self.database.update_logistics(squad_id, fields)
        if squad is None:
            raise NotFound(f"squad {squad_id} not found")
        logger.info("squad %s logistics updated by %s", squad_id, user_id)
        return squad

    def state_of(self, squad: Squad) -> SquadState:
        check = self.database.get_check(squad.check_id) if squad.check_id else None
        return derive_state(squad, check.expires_at if check else None, self.clock())

    def squad_detail(self, squad_id: str, viewer_id: Optional[str] = None) -> SquadDetail:
        """Squad with members, messages and derived state. ``viewer_id=None`` skips the member check."""

        squad = self.get_squad(squad_id) if viewer_id is None else self.require_member(squad_id, viewer_id)
        return SquadDetail(
            squad=squad,
            state=self.state_of(squad),
            members=self.database.get_members(squad_id),
            messages=self.database.list_messages(squad_id),
        )

    def list_squads(self, user_id: str) -> List[SquadDetail]:
        """The user's squads, newest first, with members but without messages."""

        return [
            SquadDetail(
                squad=squad,
                state=self.state_of(squad),
                members=self.database.get_members(squad.id),
            )
            for squad in self.database.list_squads_for_user(user_id)
        ]


__all__ = ["MembershipService", "MAX_MESSAGE_LENGTH", "MAX_LOGISTICS_LENGTH"]
