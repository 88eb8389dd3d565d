"""Social graph lookups ("who is in my graph"), consumed read-only."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Protocol

import httpx


class SocialGraphError(RuntimeError):
    """Raised when the friend-graph service cannot answer."""


class SocialGraph(Protocol):
    async def resolve(self, user_id: str) -> List[str]:
        ...

    async def close(self) -> None:
        ...


class StaticSocialGraph:
    """In-memory graph. Edges are made symmetric."""

    def __init__(self, edges: Mapping[str, Iterable[str]] | None = None) -> None:
        self._friends: Dict[str, set[str]] = {}
        for user_id, friends in (edges or {}).items():
            for friend_id in friends:
                self.add(user_id, friend_id)

    def add(self, user_id: str, friend_id: str) -> None:
        self._friends.setdefault(user_id, set()).add(friend_id)
        self._friends.setdefault(friend_id, set()).add(user_id)

    async def resolve(self, user_id: str) -> List[str]:
        return sorted(self._friends.get(user_id, set()))

    async def close(self) -> None:
        return None


class HttpSocialGraph:
    """Async wrapper around ``GET /users/{id}/friends`` of the friend-graph service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def resolve(self, user_id: str) -> List[str]:
        response = await self._client.get(f"users/{user_id}/friends")
        if response.status_code >= 400:
            raise SocialGraphError(f"friend graph lookup for {user_id} failed: HTTP {response.status_code}")
        data = response.json()
        return [str(friend_id) for friend_id in data.get("friends", [])]


__all__ = ["SocialGraphError", "SocialGraph", "StaticSocialGraph", "HttpSocialGraph"]
