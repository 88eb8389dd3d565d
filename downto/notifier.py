"""Notification delivery: an HTTP push gateway client and a fire-and-forget dispatcher."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

import httpx

from .models import NotificationKind

logger = logging.getLogger(__name__)


class PushApiError(RuntimeError):
    """Raised when the push gateway rejects a notification."""

    def __init__(self, user_id: str, error: str) -> None:
        super().__init__(f"Push delivery to {user_id} failed: {error}")
        self.user_id = user_id
        self.error = error


class Notifier(Protocol):
    async def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...


class PushClient:
    """Async wrapper around the push gateway's ``POST /notify`` endpoint."""

    def __init__(
        self,
        endpoint: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=endpoint, headers=headers, timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        response = await self._client.post(
            "notify",
            json={"user_id": user_id, "type": kind.value, **payload},
        )
        if response.status_code >= 400:
            raise PushApiError(user_id, f"HTTP {response.status_code}: {response.text[:200]}")


class LoggingNotifier:
    """Stand-in used when no push gateway is configured."""

    async def notify(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        logger.info("notification %s for %s: %s", kind.value, user_id, payload)

    async def close(self) -> None:
        return None


class NotificationDispatcher:
    """Schedules deliveries as background tasks so callers never wait on the gateway.

    Delivery failures are logged and dropped.
    """

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier
        self._pending: Set[asyncio.Task[None]] = set()

    def dispatch(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(user_id, kind, payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, user_id: str, kind: NotificationKind, payload: Dict[str, Any]) -> None:
        try:
            await self._notifier.notify(user_id, kind, payload)
        except Exception as exc:  # noqa: BLE001
            logger.error("Notification %s to %s failed: %s", kind.value, user_id, exc)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to settle."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self._notifier.close()


__all__ = ["PushApiError", "Notifier", "PushClient", "LoggingNotifier", "NotificationDispatcher"]
