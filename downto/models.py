"""Dataclasses representing Downto domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class ResponseKind(str, Enum):
    DOWN = "down"
    MAYBE = "maybe"


class SquadState(str, Enum):
    """Lifecycle state of a squad, always derived from its timestamps."""

    ACTIVE = "active"
    WARNED = "warned"
    GRACE = "grace"
    EXPIRED = "expired"


class NotificationKind(str, Enum):
    SQUAD_INVITE = "squad_invite"
    SQUAD_GRACE = "squad_grace"
    SQUAD_EXPIRING = "squad_expiring"


@dataclass(slots=True)
class InterestCheck:
    id: str
    author_id: str
    text: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    max_squad_size: int = 5
    event_date: Optional[date] = None
    event_time: Optional[str] = None


@dataclass(slots=True)
class CheckResponse:
    check_id: str
    user_id: str
    response: ResponseKind
    created_at: datetime


@dataclass(slots=True)
class Event:
    id: str
    title: str
    created_at: datetime
    venue: Optional[str] = None
    event_date: Optional[date] = None
    event_time: Optional[str] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None


@dataclass(slots=True)
class Squad:
    id: str
    name: str
    created_at: datetime
    check_id: Optional[str] = None
    event_id: Optional[str] = None
    created_by: Optional[str] = None
    expires_at: Optional[datetime] = None
    warned_at: Optional[datetime] = None
    grace_started_at: Optional[datetime] = None
    locked_date: Optional[date] = None
    meeting_spot: Optional[str] = None
    arrival_time: Optional[str] = None
    transport_notes: Optional[str] = None


@dataclass(slots=True)
class SquadMember:
    squad_id: str
    user_id: str
    joined_at: datetime


@dataclass(slots=True)
class Message:
    id: str
    squad_id: str
    sender_id: Optional[str]
    text: str
    is_system: bool
    created_at: datetime


@dataclass(slots=True)
class CheckSummary:
    """An interest check as seen by one viewer in the feed."""

    check: InterestCheck
    responses: List[CheckResponse] = field(default_factory=list)
    squad_id: Optional[str] = None
    in_squad: bool = False

    @property
    def down_count(self) -> int:
        return sum(1 for r in self.responses if r.response is ResponseKind.DOWN)

    @property
    def maybe_count(self) -> int:
        return sum(1 for r in self.responses if r.response is ResponseKind.MAYBE)


@dataclass(slots=True)
class SquadDetail:
    squad: Squad
    state: SquadState
    members: List[SquadMember] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)


__all__ = [
    "ResponseKind",
    "SquadState",
    "NotificationKind",
    "InterestCheck",
    "CheckResponse",
    "Event",
    "Squad",
    "SquadMember",
    "Message",
    "CheckSummary",
    "SquadDetail",
]
