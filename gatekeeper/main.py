"""
FastAPI application - meeting gatekeeper API.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gatekeeper.api.routes import router
from gatekeeper.config import Settings, get_settings, setup_logging
from gatekeeper.errors import GatekeeperError, InvalidInput
from gatekeeper.infrastructure.calendar_client import get_calendar_provider
from gatekeeper.infrastructure.event_sink import EventSinkRegistry
from gatekeeper.infrastructure.google_oauth import OwnerCalendarConnector
from gatekeeper.infrastructure.llm_oracles import get_decision_oracle, get_response_oracle
from gatekeeper.infrastructure.policy_store import FilePolicyStore
from gatekeeper.infrastructure.record_store import FileRecordStore
from gatekeeper.services.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings) -> Orchestrator:
    """Wire the configured adapters into an orchestrator."""
    calendar = get_calendar_provider(settings)
    return Orchestrator(
        record_store=FileRecordStore(settings.data_dir),
        policy_store=FilePolicyStore(settings.data_dir),
        sinks=EventSinkRegistry(),
        decision_oracle=get_decision_oracle(settings),
        response_oracle=get_response_oracle(settings),
        availability=calendar,
        scheduler=calendar,
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - initialize services on startup."""
    settings: Settings = app.state.settings
    logger.info("Initializing application...")

    if not settings.llm_enabled:
        logger.warning("OPENAI_API_KEY not set; decisions fall back to DECLINE unless DECISION_ORACLE=rules")
    else:
        logger.info(f"Using OpenAI model {settings.openai_model} (key {settings.mask_sensitive(settings.openai_api_key)})")

    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator(settings)
    logger.info(
        f"Decision oracle: {settings.decision_oracle.value}, calendar: {settings.calendar_provider.value}"
    )
    logger.info("Application initialized successfully")

    yield

    logger.info("Application shutting down...")


async def gatekeeper_error_handler(request: Request, exc: GatekeeperError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    body = {"error": exc.message}
    if isinstance(exc, InvalidInput) and exc.fields:
        body["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=body)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or incomplete request bodies answer 400 with the offending fields."""
    fields = []
    for error in exc.errors():
        name = ".".join(str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path"))
        if name and name not in fields:
            fields.append(name)
    message = f"Missing or invalid fields: {', '.join(fields)}" if fields else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message, "fields": fields})


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[Orchestrator] = None,
    calendar_connector: Optional[OwnerCalendarConnector] = None,
) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Meeting Gatekeeper",
        description="Conversational gatekeeper that decides whether a meeting is warranted and books it",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.calendar_connector = calendar_connector or OwnerCalendarConnector(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(GatekeeperError, gatekeeper_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    return app


def run() -> None:
    """Console entry point."""
    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    run()
