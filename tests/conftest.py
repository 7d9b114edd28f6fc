"""
Shared fixtures.
"""
from datetime import datetime, timezone

import pytest

from gatekeeper.config import CalendarBackend, DecisionOracleBackend, Settings
from gatekeeper.infrastructure.calendar_client import MockCalendarProvider
from gatekeeper.infrastructure.event_sink import EventSinkRegistry
from gatekeeper.infrastructure.policy_store import InMemoryPolicyStore
from gatekeeper.infrastructure.record_store import InMemoryRecordStore
from gatekeeper.services.orchestrator import Orchestrator
from tests.fakes import ScriptedDecisionOracle, ScriptedResponseOracle

# Monday morning, before the working day starts
FIXED_NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        openai_api_key=None,
        decision_oracle=DecisionOracleBackend.RULES,
        calendar_provider=CalendarBackend.MOCK,
        app_timezone="UTC",
        data_dir=str(tmp_path),
        google_oauth_token_path=str(tmp_path / "missing_tokens.json"),
        mock_user_email="owner@example.com",
        mock_user_name="Owner",
        mock_roles="owner",
        sse_heartbeat_s=0.05,
    )


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def calendar(clock):
    return MockCalendarProvider(timezone="UTC", clock=clock)


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def policy_store():
    return InMemoryPolicyStore()


@pytest.fixture
def sinks():
    return EventSinkRegistry()


@pytest.fixture
def response_oracle():
    return ScriptedResponseOracle("Thanks, noted.")


@pytest.fixture
def make_orchestrator(record_store, policy_store, sinks, calendar, response_oracle, settings, clock):
    """Build an orchestrator around a scripted decision oracle."""

    def factory(*decisions, decision_oracle=None, scheduler=None, responder=None):
        return Orchestrator(
            record_store=record_store,
            policy_store=policy_store,
            sinks=sinks,
            decision_oracle=decision_oracle or ScriptedDecisionOracle(*decisions),
            response_oracle=responder or response_oracle,
            availability=calendar,
            scheduler=scheduler or calendar,
            settings=settings,
            clock=clock,
        )

    return factory
