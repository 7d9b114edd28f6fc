"""
Session identity for API routes.

Credential validation happens in front of this service; locally the caller is
the development user configured by MOCK_USER_EMAIL / MOCK_ROLES.
"""
from typing import List, Optional

from fastapi import Depends, HTTPException
from pydantic import BaseModel, Field

from gatekeeper.api.dependencies import get_app_settings
from gatekeeper.config import Settings
from gatekeeper.domain.models import Requester


class CurrentUser(BaseModel):
    sub: str
    email: str
    name: Optional[str] = None
    roles: List[str] = Field(default_factory=list)

    def as_requester(self) -> Requester:
        return Requester(user_id=self.sub, email=self.email, name=self.name)


def get_current_user(settings: Settings = Depends(get_app_settings)) -> CurrentUser:
    """Resolve the caller; the local path trusts the configured development user."""
    return CurrentUser(
        sub=f"local|{settings.mock_user_email}",
        email=settings.mock_user_email,
        name=settings.mock_user_name,
        roles=settings.roles,
    )


def require_role(role: str):
    """Dependency factory rejecting callers without ``role``."""

    def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if role not in user.roles:
            raise HTTPException(status_code=403, detail=f"Missing role: {role}")
        return user

    return checker
