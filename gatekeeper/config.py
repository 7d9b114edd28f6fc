"""
Configuration module using Pydantic Settings.
Loads all settings from .env file with sensible defaults.
"""
import logging
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class DecisionOracleBackend(str, Enum):
    """Which decision oracle adapter to build."""
    OPENAI = "openai"
    RULES = "rules"


class CalendarBackend(str, Enum):
    """Which calendar adapter to build."""
    GOOGLE = "google"
    MOCK = "mock"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI settings
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_temperature: float = Field(default=0.2, alias="OPENAI_TEMPERATURE")
    llm_timeout_s: int = Field(default=60, alias="LLM_TIMEOUT_S")
    decision_oracle: DecisionOracleBackend = Field(default=DecisionOracleBackend.OPENAI, alias="DECISION_ORACLE")

    # Google Calendar settings
    calendar_provider: CalendarBackend = Field(default=CalendarBackend.GOOGLE, alias="CALENDAR_PROVIDER")
    google_calendar_id: str = Field(default="primary", alias="GOOGLE_CALENDAR_ID")
    google_requester_calendar_id: Optional[str] = Field(default=None, alias="GOOGLE_REQUESTER_CALENDAR_ID")

    # Service account auth
    google_service_account_file: Optional[str] = Field(default=None, alias="GOOGLE_SERVICE_ACCOUNT_FILE")
    google_service_account_json: Optional[str] = Field(default=None, alias="GOOGLE_SERVICE_ACCOUNT_JSON")
    google_impersonate_user: Optional[str] = Field(default=None, alias="GOOGLE_IMPERSONATE_USER")

    # Owner OAuth consent flow; the callback writes the authorized-user token
    google_oauth_client_id: Optional[str] = Field(default=None, alias="GOOGLE_OAUTH_CLIENT_ID")
    google_oauth_client_secret: Optional[str] = Field(default=None, alias="GOOGLE_OAUTH_CLIENT_SECRET")
    google_oauth_redirect_uri: str = Field(
        default="http://localhost:8000/api/calendar/oauth/callback", alias="GOOGLE_OAUTH_REDIRECT_URI"
    )
    google_oauth_token_path: str = Field(default="data/owner_google_tokens.json", alias="GOOGLE_OAUTH_TOKEN_PATH")

    # Availability defaults
    availability_window_days: int = Field(default=7, alias="AVAILABILITY_WINDOW_DAYS")
    availability_day_start: str = Field(default="09:00", alias="AVAILABILITY_DAY_START")
    availability_day_end: str = Field(default="17:00", alias="AVAILABILITY_DAY_END")
    default_meeting_minutes: int = Field(default=30, alias="DEFAULT_MEETING_MINUTES")

    # Local development identity (session validation is external)
    mock_user_email: str = Field(default="owner@example.com", alias="MOCK_USER_EMAIL")
    mock_user_name: Optional[str] = Field(default=None, alias="MOCK_USER_NAME")
    mock_roles: str = Field(default="owner", alias="MOCK_ROLES")

    # General settings
    app_timezone: str = Field(default="Europe/Budapest", alias="APP_TIMEZONE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    data_dir: str = Field(default="data", alias="DATA_DIR")
    frontend_origin: str = Field(default="http://localhost:5173", alias="FRONTEND_ORIGIN")
    sse_heartbeat_s: float = Field(default=15.0, alias="SSE_HEARTBEAT_S")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def roles(self) -> List[str]:
        """Parse mock roles from CSV string."""
        return [r.strip() for r in self.mock_roles.split(",") if r.strip()]

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)

    def has_google_service_account(self) -> bool:
        """Check if service account credentials are configured."""
        return bool(self.google_service_account_file or self.google_service_account_json)

    def has_google_oauth_client(self) -> bool:
        """Check if OAuth client credentials are configured."""
        return bool(self.google_oauth_client_id and self.google_oauth_client_secret)

    def mask_sensitive(self, value: Optional[str]) -> str:
        """Mask sensitive values for logging."""
        if not value:
            return "<not set>"
        if len(value) <= 8:
            return "****"
        return f"{value[:4]}...{value[-4:]}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # Reduce noise from HTTP clients
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.WARNING)
