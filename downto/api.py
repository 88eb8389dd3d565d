"""FastAPI application exposing the Downto REST API."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings, load_settings
from .datelock import DEFAULT_EXTENSION_DAYS
from .display import expires_in_label, expiry_percent
from .errors import DowntoError
from .models import CheckSummary, Message, ResponseKind, Squad, SquadDetail
from .service import DowntoService, build_service

logger = logging.getLogger(__name__)


class CheckCreateIn(BaseModel):
    text: str
    expires_in_hours: Optional[float] = None
    max_squad_size: Optional[int] = None
    event_date: Optional[date] = None
    event_time: Optional[str] = None


class CheckPatchIn(BaseModel):
    text: Optional[str] = None
    event_date: Optional[date] = None
    event_time: Optional[str] = None
    max_squad_size: Optional[int] = None


class RespondIn(BaseModel):
    response: ResponseKind


class EventImportIn(BaseModel):
    url: str


class FormSquadIn(BaseModel):
    check_id: Optional[str] = None
    event_id: Optional[str] = None
    member_ids: List[str] = Field(default_factory=list)


class MessageIn(BaseModel):
    text: str


class SetDateIn(BaseModel):
    squad_id: str
    date: date
    time: Optional[str] = None


class ClearDateIn(BaseModel):
    squad_id: str


class ExtendIn(BaseModel):
    squad_id: str
    days: int = DEFAULT_EXTENSION_DAYS


class LogisticsPatchIn(BaseModel):
    meeting_spot: Optional[str] = None
    arrival_time: Optional[str] = None
    transport_notes: Optional[str] = None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def check_out(summary: CheckSummary, now: datetime) -> Dict[str, Any]:
    check = summary.check
    return {
        "id": check.id,
        "author_id": check.author_id,
        "text": check.text,
        "created_at": _iso(check.created_at),
        "expires_at": _iso(check.expires_at),
        "expires_in": expires_in_label(check.expires_at, now),
        "expiry_percent": expiry_percent(check.created_at, check.expires_at, now),
        "max_squad_size": check.max_squad_size,
        "event_date": check.event_date.isoformat() if check.event_date else None,
        "event_time": check.event_time,
        "responses": [
            {"user_id": r.user_id, "response": r.response.value} for r in summary.responses
        ],
        "down_count": summary.down_count,
        "maybe_count": summary.maybe_count,
        "squad_id": summary.squad_id,
        "in_squad": summary.in_squad,
    }


def squad_out(squad: Squad, now: datetime) -> Dict[str, Any]:
    return {
        "id": squad.id,
        "name": squad.name,
        "check_id": squad.check_id,
        "event_id": squad.event_id,
        "created_at": _iso(squad.created_at),
        "expires_at": _iso(squad.expires_at),
        "expires_in": expires_in_label(squad.expires_at, now),
        "warned_at": _iso(squad.warned_at),
        "grace_started_at": _iso(squad.grace_started_at),
        "locked_date": squad.locked_date.isoformat() if squad.locked_date else None,
        "meeting_spot": squad.meeting_spot,
        "arrival_time": squad.arrival_time,
        "transport_notes": squad.transport_notes,
    }


def message_out(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "sender_id": message.sender_id,
        "text": message.text,
        "is_system": message.is_system,
        "created_at": _iso(message.created_at),
    }


def detail_out(detail: SquadDetail, now: datetime) -> Dict[str, Any]:
    return {
        **squad_out(detail.squad, now),
        "state": detail.state.value,
        "members": [member.user_id for member in detail.members],
        "messages": [message_out(message) for message in detail.messages],
    }


def create_app(
    settings: Optional[Settings] = None, service: Optional[DowntoService] = None
) -> FastAPI:
    settings = settings or load_settings()
    service = service or build_service(settings)
    background: Dict[str, asyncio.Task[None]] = {}

    async def verify_api_key(x_api_key: str = Header(..., alias="X-API-Key")) -> None:
        if x_api_key != settings.api_key:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid api key")

    async def verify_cron(authorization: Optional[str] = Header(None)) -> None:
        if not settings.cron_secret:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="cron secret is not configured"
            )
        if authorization != f"Bearer {settings.cron_secret}":
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    def current_user(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
        return x_user_id

    def actor_name(x_user_name: Optional[str] = Header(None, alias="X-User-Name")) -> Optional[str]:
        return x_user_name

    def get_service() -> DowntoService:
        return service

    app = FastAPI(title="Downto API", version="1.0.0")

    @app.exception_handler(DowntoError)
    async def downto_error_handler(request: Request, exc: DowntoError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.kind, "detail": exc.message}
        )

    @app.on_event("startup")
    async def startup_event() -> None:
        if settings.sweep_interval_seconds > 0:
            background["sweep"] = asyncio.create_task(
                service.reconciler.periodic_sweep(settings.sweep_interval_seconds)
            )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        task = background.pop("sweep", None)
        if task is not None:
            task.cancel()
        await service.close()

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        """Lightweight readiness probe for platform monitors."""

        return {"status": "ok"}

    # region Checks
    @app.post("/api/checks", status_code=status.HTTP_201_CREATED, dependencies=[Depends(verify_api_key)])
    async def create_check(
        body: CheckCreateIn,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        hours = body.expires_in_hours
        if "expires_in_hours" not in body.model_fields_set:
            hours = settings.default_check_hours
        check = svc.checks.create_check(
            user_id,
            body.text,
            hours,
            max_squad_size=body.max_squad_size,
            event_date=body.event_date,
            event_time=body.event_time,
        )
        return check_out(CheckSummary(check=check), svc.clock())

    @app.get("/api/checks", dependencies=[Depends(verify_api_key)])
    async def list_checks(
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        now = svc.clock()
        summaries = await svc.checks.list_active(user_id)
        return {"checks": [check_out(summary, now) for summary in summaries]}

    @app.patch("/api/checks/{check_id}", dependencies=[Depends(verify_api_key)])
    async def edit_check(
        check_id: str,
        body: CheckPatchIn,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        patch = body.model_dump(exclude_unset=True)
        check = svc.checks.edit_check(check_id, user_id, patch)
        return check_out(CheckSummary(check=check), svc.clock())

    @app.delete("/api/checks/{check_id}", dependencies=[Depends(verify_api_key)])
    async def delete_check(
        check_id: str,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Response:
        svc.checks.delete_check(check_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.put("/api/checks/{check_id}/response", dependencies=[Depends(verify_api_key)])
    async def respond(
        check_id: str,
        body: RespondIn,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        response = svc.checks.respond(check_id, user_id, body.response)
        return {"check_id": check_id, "user_id": user_id, "response": response.response.value}

    @app.delete("/api/checks/{check_id}/response", dependencies=[Depends(verify_api_key)])
    async def withdraw_response(
        check_id: str,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Response:
        svc.checks.withdraw_response(check_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # endregion

    # region Events
    @app.post("/api/events/import", dependencies=[Depends(verify_api_key)])
    async def import_event(
        body: EventImportIn,
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        event = await svc.import_event(body.url)
        if event is None:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="could not import event")
        return {
            "id": event.id,
            "title": event.title,
            "venue": event.venue,
            "event_date": event.event_date.isoformat() if event.event_date else None,
            "event_time": event.event_time,
            "image_url": event.image_url,
        }

    # endregion

    # region Squads
    @app.post("/api/squads", dependencies=[Depends(verify_api_key)])
    async def form_squad(
        body: FormSquadIn,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        squad = await svc.formation.form_squad(
            user_id, body.member_ids, check_id=body.check_id, event_id=body.event_id
        )
        return squad_out(squad, svc.clock())

    @app.get("/api/squads", dependencies=[Depends(verify_api_key)])
    async def list_squads(
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        now = svc.clock()
        return {"squads": [detail_out(detail, now) for detail in svc.membership.list_squads(user_id)]}

    @app.post("/api/squads/set-date", dependencies=[Depends(verify_api_key)])
    async def set_date(
        body: SetDateIn,
        user_id: str = Depends(current_user),
        name: Optional[str] = Depends(actor_name),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        expires_at = svc.datelock.set_date(body.squad_id, user_id, body.date, body.time, actor_name=name)
        return {"ok": True, "expires_at": expires_at.isoformat()}

    @app.post("/api/squads/clear-date", dependencies=[Depends(verify_api_key)])
    async def clear_date(
        body: ClearDateIn,
        user_id: str = Depends(current_user),
        name: Optional[str] = Depends(actor_name),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        svc.datelock.clear_date(body.squad_id, user_id, actor_name=name)
        return {"ok": True}

    @app.post("/api/squads/extend", dependencies=[Depends(verify_api_key)])
    async def extend(
        body: ExtendIn,
        user_id: str = Depends(current_user),
        name: Optional[str] = Depends(actor_name),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        expires_at = svc.datelock.extend_squad(body.squad_id, user_id, body.days, actor_name=name)
        return {"ok": True, "expires_at": expires_at.isoformat()}

    @app.get("/api/squads/{squad_id}", dependencies=[Depends(verify_api_key)])
    async def get_squad(
        squad_id: str,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        return detail_out(svc.membership.squad_detail(squad_id, user_id), svc.clock())

    @app.post("/api/squads/{squad_id}/join", dependencies=[Depends(verify_api_key)])
    async def join(
        squad_id: str,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Response:
        svc.membership.join(squad_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/squads/{squad_id}/leave", dependencies=[Depends(verify_api_key)])
    async def leave(
        squad_id: str,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Response:
        svc.membership.leave(squad_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/api/squads/{squad_id}/messages", dependencies=[Depends(verify_api_key)])
    async def post_message(
        squad_id: str,
        body: MessageIn,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        return message_out(svc.membership.post_message(squad_id, user_id, body.text))

    @app.patch("/api/squads/{squad_id}/logistics", dependencies=[Depends(verify_api_key)])
    async def update_logistics(
        squad_id: str,
        body: LogisticsPatchIn,
        user_id: str = Depends(current_user),
        svc: DowntoService = Depends(get_service),
    ) -> Dict[str, Any]:
        patch = body.model_dump(exclude_unset=True)
        squad = svc.membership.update_logistics(squad_id, user_id, patch)
        return squad_out(squad, svc.clock())

    # endregion

    @app.api_route("/api/cron/squad-expiry", methods=["GET", "POST"], dependencies=[Depends(verify_cron)])
    async def squad_expiry(svc: DowntoService = Depends(get_service)) -> Dict[str, Any]:
        result = await svc.reconciler.run_sweep()
        return {"ok": True, **result.as_dict()}

    return app


__all__ = ["create_app", "check_out", "squad_out", "detail_out", "message_out"]
