"""Periodic sweep that walks squads through grace, warning and expiry."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .clock import Clock, now_utc
from .db import Database
from .lifecycle import (
    GRACE_MESSAGE,
    WARNING_MESSAGE,
    WARNING_WINDOW,
    Transition,
    due_transitions,
)
from .models import NotificationKind, Squad
from .notifier import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepResult:
    grace_messages: int = 0
    warnings: int = 0
    expired: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class LifecycleReconciler:
    """Applies due lifecycle transitions.

    Safe to run repeatedly and from several workers at once: every transition
    is a conditional write that only one caller can win, and the system
    message is written in the same transaction as the winning stamp.
    """

    def __init__(
        self,
        database: Database,
        dispatcher: NotificationDispatcher,
        clock: Clock = now_utc,
    ) -> None:
        self.database = database
        self.dispatcher = dispatcher
        self.clock = clock

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        now = now or self.clock()
        result = SweepResult()
        logger.info("Starting squad sweep at %s", now.isoformat())

        plan: List[Tuple[Squad, List[Transition]]] = []
        for squad, check_expires_at in self.database.squads_for_sweep():
            due = due_transitions(squad, check_expires_at, now)
            if due:
                plan.append((squad, due))

        # Steps run grace -> warn -> expire across the whole pass.
        for step in Transition:
            for squad, due in plan:
                if step not in due:
                    continue
                try:
                    self._apply(step, squad, now, result)
                except Exception:  # noqa: BLE001
                    result.errors += 1
                    logger.exception("Sweep step %s failed for squad %s", step.value, squad.id)

        logger.info(
            "Squad sweep complete: %s grace, %s warned, %s expired, %s errors",
            result.grace_messages,
            result.warnings,
            result.expired,
            result.errors,
        )
        return result

    def _apply(self, step: Transition, squad: Squad, now: datetime, result: SweepResult) -> None:
        if step is Transition.GRACE:
            if self.database.mark_grace(squad.id, now, GRACE_MESSAGE):
                result.grace_messages += 1
                self._notify_members(squad, NotificationKind.SQUAD_GRACE, GRACE_MESSAGE)
        elif step is Transition.WARN:
            if self.database.mark_warned(squad.id, now, WARNING_WINDOW, WARNING_MESSAGE):
                result.warnings += 1
                self._notify_members(squad, NotificationKind.SQUAD_EXPIRING, WARNING_MESSAGE)
        elif step is Transition.EXPIRE:
            if self.database.delete_expired_squad(squad.id, now):
                result.expired += 1
                logger.info("squad %s expired", squad.id)

    def _notify_members(self, squad: Squad, kind: NotificationKind, body: str) -> None:
        for member in self.database.get_members(squad.id):
            self.dispatcher.dispatch(
                member.user_id,
                kind,
                {"title": squad.name, "body": body, "related_squad_id": squad.id},
            )

    async def periodic_sweep(self, interval_seconds: int) -> None:
        while True:
            try:
                await self.run_sweep()
            except Exception as exc:  # noqa: BLE001
                logger.error("Squad sweep failed: %s", exc)
            await asyncio.sleep(interval_seconds)


__all__ = ["SweepResult", "LifecycleReconciler"]
