"""
Owner Google consent flow.

The owner opens the authorization URL once; Google redirects back to the
callback with a code, which is exchanged for an authorized-user token and
stored where GoogleCalendarProvider reads it.
"""
import asyncio
import logging
from typing import Any, Callable, Optional

from google_auth_oauthlib.flow import Flow

from gatekeeper.config import Settings, get_settings
from gatekeeper.errors import InvalidInput, ProviderError
from gatekeeper.infrastructure.calendar_client import CALENDAR_SCOPES, write_token_file

logger = logging.getLogger(__name__)


class OwnerCalendarConnector:
    """Runs the OAuth web flow that connects the owner's Google calendar."""

    def __init__(self, settings: Optional[Settings] = None, flow_factory: Optional[Callable[..., Any]] = None):
        self.settings = settings or get_settings()
        self._flow_factory = flow_factory or self._build_flow
        # Only the most recent consent request can complete
        self._pending_state: Optional[str] = None
        self._code_verifier: Optional[str] = None

    def _build_flow(self, state: Optional[str] = None) -> Flow:
        if not self.settings.has_google_oauth_client():
            raise ProviderError("Google OAuth client is not configured")

        client_config = {
            "web": {
                "client_id": self.settings.google_oauth_client_id,
                "client_secret": self.settings.google_oauth_client_secret,
                "redirect_uris": [self.settings.google_oauth_redirect_uri],
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        }
        return Flow.from_client_config(
            client_config,
            scopes=CALENDAR_SCOPES,
            redirect_uri=self.settings.google_oauth_redirect_uri,
            state=state,
        )

    def authorization_url(self) -> str:
        """Start a consent request; offline access so the token can be refreshed."""
        flow = self._flow_factory()
        url, state = flow.authorization_url(access_type="offline", prompt="consent")
        self._pending_state = state
        self._code_verifier = getattr(flow, "code_verifier", None)
        logger.info("Owner Google consent requested")
        return url

    async def complete(self, code: Optional[str], state: Optional[str]) -> None:
        """
        Exchange the callback code and store the owner's token.

        Raises:
            InvalidInput: missing code, or a state that does not match the pending request
            ProviderError: Google rejected the exchange
        """
        if not code:
            raise InvalidInput("Missing authorization code", fields=["code"])
        if self._pending_state is None or state != self._pending_state:
            raise InvalidInput("Unknown or expired OAuth state", fields=["state"])

        flow = self._flow_factory(state=state)
        flow.code_verifier = self._code_verifier
        try:
            await asyncio.to_thread(flow.fetch_token, code=code)
        except Exception as e:
            logger.error(f"Google token exchange failed: {e}")
            raise ProviderError(f"Google token exchange failed: {e}") from e

        try:
            write_token_file(self.settings.google_oauth_token_path, flow.credentials.to_json())
        except OSError as e:
            raise ProviderError(f"Could not store Google token: {e}") from e

        self._pending_state = None
        self._code_verifier = None
        logger.info("Owner Google calendar connected")
