"""Core orchestration for Downto: wires the store, collaborators and services."""

from __future__ import annotations

import logging
from typing import Optional

from .checks import CheckService
from .clock import Clock, now_utc
from .config import Settings
from .datelock import DateLockService
from .db import Database, new_id
from .event_importer import EventImporter
from .formation import FormationService
from .membership import MembershipService
from .models import Event
from .notifier import LoggingNotifier, NotificationDispatcher, PushClient
from .reconciler import LifecycleReconciler
from .social import HttpSocialGraph, SocialGraph, StaticSocialGraph

logger = logging.getLogger(__name__)


class DowntoService:
    """High-level service exposing every operation the API and MCP layers call."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        dispatcher: NotificationDispatcher,
        social_graph: SocialGraph,
        importer: Optional[EventImporter] = None,
        clock: Clock = now_utc,
    ) -> None:
        self.settings = settings
        self.database = database
        self.dispatcher = dispatcher
        self.social_graph = social_graph
        self.importer = importer
        self.clock = clock

        self.checks = CheckService(
            database,
            social_graph,
            clock=clock,
            default_max_squad_size=settings.default_max_squad_size,
        )
        self.formation = FormationService(database, dispatcher, clock=clock)
        self.membership = MembershipService(database, clock=clock)
        self.datelock = DateLockService(database, self.membership, clock=clock)
        self.reconciler = LifecycleReconciler(database, dispatcher, clock=clock)

    async def import_event(self, url: str) -> Optional[Event]:
        """Import an event from a link and store it. Returns ``None`` when the importer fails."""

        if self.importer is None:
            logger.warning("EVENT_IMPORTER_URL is not set; cannot import %s", url)
            return None
        try:
            descriptor = await self.importer.import_event(url)
        except Exception as exc:  # noqa: BLE001
            logger.error("Event import failed for %s: %s", url, exc)
            return None
        event = Event(
            id=new_id(),
            title=descriptor.title,
            created_at=self.clock(),
            venue=descriptor.venue,
            event_date=descriptor.event_date,
            event_time=descriptor.event_time,
            image_url=descriptor.image_url,
            source_url=descriptor.source_url,
        )
        return self.database.insert_event(event)

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.social_graph.close()
        if self.importer is not None:
            await self.importer.close()


def build_service(settings: Settings, clock: Clock = now_utc) -> DowntoService:
    """Construct the service with collaborators chosen from ``settings``."""

    database = Database(settings.database_path)
    if settings.push_endpoint:
        notifier = PushClient(settings.push_endpoint, settings.push_token)
    else:
        notifier = LoggingNotifier()
    if settings.social_graph_url:
        social_graph: SocialGraph = HttpSocialGraph(settings.social_graph_url)
    else:
        logger.warning("SOCIAL_GRAPH_URL is not set. Viewers will only see their own checks.")
        social_graph = StaticSocialGraph()
    importer = EventImporter(settings.event_importer_url) if settings.event_importer_url else None
    return DowntoService(
        settings,
        database,
        NotificationDispatcher(notifier),
        social_graph,
        importer=importer,
        clock=clock,
    )


__all__ = ["DowntoService", "build_service"]
