"""Request/response models for the HTTP API."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from gatekeeper.domain.models import Slot


class StartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    initial_message: Optional[str] = Field(default=None, alias="initialMessage")


class StartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")


class MessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    content: str = ""


class CompleteRequest(BaseModel):
    """Free-form submission: the client sends the whole form object."""
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    form: Optional[Dict[str, Any]] = None
    slot: Optional[Slot] = None


class FormSubmitRequest(BaseModel):
    """Schema-bound submission: values keyed by the issued form's field names."""
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    form_id: str = Field(alias="formId")
    values: Dict[str, Any] = Field(default_factory=dict)
    slot: Optional[Slot] = None


class BookingResponse(BaseModel):
    ok: bool = True
    event: Dict[str, Any]


class SessionResponse(BaseModel):
    user: Dict[str, Any]
    roles: List[str]


class AvailabilityResponse(BaseModel):
    slots: List[Slot]
