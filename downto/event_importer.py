"""HTTP client for the event importer (link scraping service)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

import httpx


class EventImportError(RuntimeError):
    """Raised when the importer cannot produce an event for a URL."""

    def __init__(self, url: str, error: str) -> None:
        super().__init__(f"Event import failed for {url}: {error}")
        self.url = url
        self.error = error


@dataclass(slots=True)
class EventDescriptor:
    title: str
    venue: Optional[str] = None
    event_date: Optional[date] = None
    event_time: Optional[str] = None
    image_url: Optional[str] = None
    source_url: Optional[str] = None


class EventImporter:
    """Async wrapper around the importer's ``POST /scrape`` endpoint."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def import_event(self, url: str) -> EventDescriptor:
        response = await self._client.post("scrape", json={"url": url})
        if response.status_code >= 400:
            raise EventImportError(url, f"HTTP {response.status_code}")
        data: Dict[str, Any] = response.json()
        if data.get("error"):
            raise EventImportError(url, str(data["error"]))
        title = (data.get("title") or "").strip()
        if not title:
            raise EventImportError(url, "no title in descriptor")
        raw_date = data.get("date")
        try:
            event_date = date.fromisoformat(raw_date) if raw_date else None
        except ValueError:
            event_date = None
        return EventDescriptor(
            title=title,
            venue=data.get("venue"),
            event_date=event_date,
            event_time=data.get("time"),
            image_url=data.get("image"),
            source_url=url,
        )


__all__ = ["EventImportError", "EventDescriptor", "EventImporter"]
