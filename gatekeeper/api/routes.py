"""
HTTP routes.

Endpoints:
- GET  /api/health
- GET  /api/auth/session
- POST /api/agent/start
- GET  /api/agent/stream/{job_id} - Server-Sent Events
- POST /api/agent/message
- POST /api/agent/complete
- POST /api/agent/form/submit
- GET  /api/agent/jobs/{job_id}
- GET/POST /api/config (owner)
- GET  /api/calendar/availability (owner)
- GET  /api/calendar/oauth/initiate (owner)
- GET  /api/calendar/oauth/callback - Google redirect target
"""
import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from fastapi.responses import PlainTextResponse, StreamingResponse

from gatekeeper.api.auth import CurrentUser, get_current_user, require_role
from gatekeeper.api.dependencies import get_app_settings, get_calendar_connector, get_orchestrator
from gatekeeper.api.schemas import (
    AvailabilityResponse,
    BookingResponse,
    CompleteRequest,
    FormSubmitRequest,
    MessageRequest,
    SessionResponse,
    StartRequest,
    StartResponse,
)
from gatekeeper.config import Settings
from gatekeeper.infrastructure.google_oauth import OwnerCalendarConnector
from gatekeeper.services.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/auth/session", response_model=SessionResponse)
async def session(user: CurrentUser = Depends(get_current_user)):
    return SessionResponse(user=user.model_dump(exclude={"roles"}), roles=user.roles)


# ----------------------------------------------------------------------
# Agent
# ----------------------------------------------------------------------

@router.post("/agent/start", response_model=StartResponse)
async def start(
    request: Optional[StartRequest] = None,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    initial_message = request.initial_message if request else None
    job_id = await orchestrator.start(initial_message, owner_user_id=user.sub)
    return StartResponse(job_id=job_id)


@router.get("/agent/stream/{job_id}")
async def stream(
    job_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
):
    """Stream job events; a new connection replaces the previous subscriber."""
    sink = await orchestrator.subscribe(job_id)
    logger.info(f"SSE client {user.email} subscribed to job {job_id}")

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(f"SSE client for job {job_id} disconnected")
                    break
                try:
                    event = await sink.next_event(timeout=settings.sse_heartbeat_s)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                if event is None:
                    break
                yield event.format()
        finally:
            orchestrator.sinks.detach(job_id, sink)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/agent/message")
async def message(
    request: MessageRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    await orchestrator.receive_message(request.job_id, request.content)
    return {"ok": True}


@router.post("/agent/complete", response_model=BookingResponse)
async def complete(
    request: CompleteRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    booking = await orchestrator.submit_details(
        request.job_id,
        request.form,
        slot=request.slot,
        requester=user.as_requester(),
    )
    return BookingResponse(event=booking.model_dump(by_alias=True))


@router.post("/agent/form/submit", response_model=BookingResponse)
async def form_submit(
    request: FormSubmitRequest,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    booking = await orchestrator.submit_details(
        request.job_id,
        request.values,
        slot=request.slot,
        form_id=request.form_id,
        requester=user.as_requester(),
    )
    return BookingResponse(event=booking.model_dump(by_alias=True))


@router.get("/agent/jobs/{job_id}")
async def get_job(
    job_id: str,
    user: CurrentUser = Depends(get_current_user),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Full persisted job, decision entries included."""
    job = await orchestrator.get_job(job_id)
    return job.model_dump(mode="json", by_alias=True)


# ----------------------------------------------------------------------
# Owner
# ----------------------------------------------------------------------

@router.get("/config")
async def get_config(
    user: CurrentUser = Depends(require_role("owner")),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    policy = await orchestrator.get_policy()
    return policy.model_dump(by_alias=True)


@router.post("/config")
async def update_config(
    changes: Dict[str, Any] = Body(...),
    user: CurrentUser = Depends(require_role("owner")),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    policy = await orchestrator.update_policy(changes)
    return policy.model_dump(by_alias=True)


@router.get("/calendar/availability", response_model=AvailabilityResponse)
async def availability(
    days: Optional[int] = Query(default=None, ge=1, le=60),
    minutes: Optional[int] = Query(default=None, ge=5, le=480),
    owner_only: bool = Query(default=True, alias="ownerOnly"),
    user: CurrentUser = Depends(require_role("owner")),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    slots = await orchestrator.suggest_availability(days, minutes, owner_only=owner_only)
    return AvailabilityResponse(slots=slots)


@router.get("/calendar/oauth/initiate")
async def oauth_initiate(
    user: CurrentUser = Depends(require_role("owner")),
    connector: OwnerCalendarConnector = Depends(get_calendar_connector),
):
    """Consent URL for connecting the owner's Google calendar."""
    return {"url": connector.authorization_url()}


@router.get("/calendar/oauth/callback", response_class=PlainTextResponse)
async def oauth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    connector: OwnerCalendarConnector = Depends(get_calendar_connector),
):
    await connector.complete(code, state)
    return "Google connected. You can close this tab."
