"""
FastAPI dependency injection.

Services are built once in the application lifespan and kept on app.state;
routes receive them through these providers so tests can swap them.
"""
from fastapi import Request

from gatekeeper.config import Settings
from gatekeeper.infrastructure.google_oauth import OwnerCalendarConnector
from gatekeeper.services.orchestrator import Orchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_calendar_connector(request: Request) -> OwnerCalendarConnector:
    return request.app.state.calendar_connector
