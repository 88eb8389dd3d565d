"""MCP server exposing Downto operator tools."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List

from mcp.server.fastmcp import FastMCP

from .api import check_out, detail_out
from .config import load_settings
from .service import build_service

mcp = FastMCP("downto")

_settings = load_settings()
_service = build_service(_settings)
_sweep_lock = asyncio.Lock()


@mcp.tool()
async def get_active_checks(viewer: str) -> List[Dict[str, Any]]:
    """Return the unexpired interest checks visible to a user."""

    now = datetime.now(timezone.utc)
    return [check_out(summary, now) for summary in await _service.checks.list_active(viewer)]


@mcp.tool()
async def get_squad_status(squad_id: str) -> Dict[str, Any]:
    """Return a squad with its members, messages and lifecycle state."""

    detail = _service.membership.squad_detail(squad_id)
    return detail_out(detail, datetime.now(timezone.utc))


@mcp.tool()
async def run_sweep() -> Dict[str, int]:
    """Run one lifecycle sweep now (grace, warnings, expiry)."""

    async with _sweep_lock:
        result = await _service.reconciler.run_sweep()
    return result.as_dict()


__all__ = ["mcp", "get_active_checks", "get_squad_status", "run_sweep"]
