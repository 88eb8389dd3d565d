"""Interest checks: creation, responses, author edits and the viewer feed."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from .clock import Clock, now_utc, parse_clock_time, parse_day
from .db import Database, new_id
from .errors import Conflict, Forbidden, InvalidInput, NotFound
from .models import CheckResponse, CheckSummary, InterestCheck, ResponseKind
from .social import SocialGraph

logger = logging.getLogger(__name__)

MAX_CHECK_TEXT = 280
MIN_SQUAD_SIZE = 2


def clean_check_text(text: str) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise InvalidInput("check text must not be empty")
    if len(cleaned) > MAX_CHECK_TEXT:
        raise InvalidInput(f"check text must be at most {MAX_CHECK_TEXT} characters")
    return cleaned


def _validated_size(max_squad_size: int) -> int:
    if max_squad_size < MIN_SQUAD_SIZE:
        raise InvalidInput(f"max_squad_size must be at least {MIN_SQUAD_SIZE}")
    return max_squad_size


def _validated_day(value: Any):
    try:
        return parse_day(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("event_date must be YYYY-MM-DD") from exc


def _validated_time(value: Optional[str]) -> Optional[str]:
    try:
        return parse_clock_time(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("event_time must be HH:MM") from exc


class CheckService:
    def __init__(
        self,
        database: Database,
        social_graph: SocialGraph,
        clock: Clock = now_utc,
        default_max_squad_size: int = 5,
    ) -> None:
        self.database = database
        self.social_graph = social_graph
        self.clock = clock
        self.default_max_squad_size = default_max_squad_size

    def get_check(self, check_id: str) -> InterestCheck:
        check = self.database.get_check(check_id)
        if check is None:
            raise NotFound(f"check {check_id} not found")
        return check

    def create_check(
        self,
        author_id: str,
        text: str,
        expires_in_hours: Optional[float],
        max_squad_size: Optional[int] = None,
        event_date: Any = None,
        event_time: Optional[str] = None,
    ) -> InterestCheck:
        """Broadcast a plan. ``expires_in_hours=None`` leaves the check open-ended."""

        now = self.clock()
        if expires_in_hours is not None and expires_in_hours <= 0:
            raise InvalidInput("expires_in_hours must be positive or null")
        check = InterestCheck(
            id=new_id(),
            author_id=author_id,
            text=clean_check_text(text),
            created_at=now,
            expires_at=now + timedelta(hours=expires_in_hours) if expires_in_hours is not None else None,
            max_squad_size=_validated_size(
                max_squad_size if max_squad_size is not None else self.default_max_squad_size
            ),
            event_date=_validated_day(event_date),
            event_time=_validated_time(event_time),
        )
        self.database.insert_check(check)
        logger.info("check %s created by %s", check.id, author_id)
        return check

    def respond(self, check_id: str, user_id: str, response: ResponseKind | str) -> CheckResponse:
        try:
            kind = ResponseKind(response)
        except ValueError as exc:
            raise InvalidInput("response must be 'down' or 'maybe'") from exc
        return self.database.upsert_response(check_id, user_id, kind, self.clock())

    def withdraw_response(self, check_id: str, user_id: str) -> None:
        self.get_check(check_id)
        self.database.delete_response(check_id, user_id)

    def edit_check(self, check_id: str, author_id: str, patch: Mapping[str, Any]) -> InterestCheck:
        check = self.get_check(check_id)
        if check.author_id != author_id:
            raise Forbidden("only the author can edit this check")

        fields: Dict[str, Any] = {}
        for name, value in patch.items():
            if name == "text":
                fields["text"] = clean_check_text(value)
            elif name == "event_date":
                fields["event_date"] = _validated_day(value)
            elif name == "event_time":
                fields["event_time"] = _validated_time(value)
            elif name == "max_squad_size":
                if value is None:
                    raise InvalidInput("max_squad_size must be a number")
                try:
                    size = int(value)
                except (TypeError, ValueError) as exc:
                    raise InvalidInput("max_squad_size must be a number") from exc
                fields["max_squad_size"] = _validated_size(size)
            else:
                raise InvalidInput(f"{name} cannot be edited")

        updated = self.database.update_check(check_id, fields)
        if updated is None:
            raise NotFound(f"check {check_id} not found")
        return updated

    def delete_check(self, check_id: str, author_id: str) -> None:
        check = self.get_check(check_id)
        if check.author_id != author_id:
            raise Forbidden("only the author can delete this check")
        if not self.database.delete_check_if_unreferenced(check_id):
            if self.database.get_check(check_id) is None:
                return
            raise Conflict("a squad was formed from this check; it cannot be deleted")
        logger.info("check %s deleted by %s", check_id, author_id)

    async def _graph_of(self, viewer_id: str) -> List[str]:
        try:
            return await self.social_graph.resolve(viewer_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Social graph lookup for %s failed: %s", viewer_id, exc)
            return []

    async def list_active(self, viewer_id: str) -> List[CheckSummary]:
        """Unexpired checks by the viewer or anyone in the viewer's graph, newest first."""

        visible = {viewer_id, *await self._graph_of(viewer_id)}
        checks = self.database.list_active_checks(visible, self.clock())
        check_ids = [check.id for check in checks]
        responses = self.database.get_responses(check_ids)
        squads = self.database.get_squads_by_checks(check_ids)
        members = self.database.get_member_ids_for_squads(squad.id for squad in squads.values())

        summaries: List[CheckSummary] = []
        for check in checks:
            summary = CheckSummary(check=check, responses=responses.get(check.id, []))
            squad = squads.get(check.id)
            if squad is not None:
                squad_members = set(members.get(squad.id, []))
                if squad_members & visible:
                    summary.squad_id = squad.id
                summary.in_squad = viewer_id in squad_members
            summaries.append(summary)
        return summaries


__all__ = ["CheckService", "MAX_CHECK_TEXT", "clean_check_text"]
