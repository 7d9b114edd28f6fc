"""
Error taxonomy for the gatekeeper service.

Input and lookup errors surface immediately as request failures.
Oracle and provider errors raised mid-pipeline are absorbed by the
orchestrator and reported through the job's event stream.
"""
from typing import List, Optional


class GatekeeperError(Exception):
    """Base exception for all gatekeeper errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(GatekeeperError):
    """Unknown job id."""

    status_code = 404


class InvalidInput(GatekeeperError):
    """Request is missing required fields or carries malformed values."""

    status_code = 400

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class InvalidState(GatekeeperError):
    """Operation is not allowed in the job's current lifecycle state."""

    status_code = 409


class InvalidTransition(InvalidState):
    """A state change that is not an edge of the job state machine."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition job from '{current}' to '{target}'")
        self.current = current
        self.target = target


class OracleUnavailable(GatekeeperError):
    """Decision or response generation cannot run."""

    status_code = 503


class ParseError(OracleUnavailable):
    """Oracle returned output that does not match the expected schema."""


class ProviderError(GatekeeperError):
    """Calendar listing or booking failed."""

    status_code = 502


class RecordStoreError(GatekeeperError):
    """Job record could not be persisted."""

    status_code = 500
