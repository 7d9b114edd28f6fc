"""
Domain models - Core business entities.
Following SOLID: Single Responsibility Principle - each model has one clear purpose.
"""
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gatekeeper.errors import InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    """Lifecycle state of a scheduling conversation."""
    AWAITING_INPUT = "awaiting_input"
    EVALUATING = "evaluating"
    APPROVED_NEEDS_DETAILS = "approved_needs_details"
    READY_TO_SCHEDULE = "ready_to_schedule"
    SCHEDULING = "scheduling"
    SCHEDULED = "scheduled"
    NOTIFIED = "notified"
    ERROR = "error"


TERMINAL_STATES = frozenset({JobState.SCHEDULED, JobState.NOTIFIED, JobState.ERROR})

ALLOWED_TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.AWAITING_INPUT: frozenset({JobState.EVALUATING}),
    JobState.EVALUATING: frozenset({
        JobState.AWAITING_INPUT,
        JobState.APPROVED_NEEDS_DETAILS,
        JobState.READY_TO_SCHEDULE,
    }),
    # The user may keep chatting until details are submitted
    JobState.APPROVED_NEEDS_DETAILS: frozenset({JobState.READY_TO_SCHEDULE, JobState.EVALUATING}),
    JobState.READY_TO_SCHEDULE: frozenset({JobState.SCHEDULING, JobState.EVALUATING}),
    JobState.SCHEDULING: frozenset({JobState.NOTIFIED, JobState.ERROR}),
    JobState.SCHEDULED: frozenset(),
    JobState.NOTIFIED: frozenset(),
    JobState.ERROR: frozenset(),
}

# States from which a submitted form may start scheduling
SUBMITTABLE_STATES = frozenset({JobState.APPROVED_NEEDS_DETAILS, JobState.READY_TO_SCHEDULE})


class Decision(str, Enum):
    APPROVE = "APPROVE"
    DECLINE = "DECLINE"


class DecisionResult(BaseModel):
    """Structured judgment returned by the decision oracle."""
    decision: Decision = Field(description="APPROVE if a live meeting is warranted, otherwise DECLINE")
    rationale: str = Field(default="", description="One or two sentences explaining the decision")
    missing: Optional[List[str]] = Field(
        default=None,
        description=(
            "Meeting details still needed, e.g. topic, attendees, urgency, desiredTimeframe. "
            "An empty list means nothing is missing; omit it to use the owner's required fields."
        ),
    )

    @field_validator("decision", mode="before")
    @classmethod
    def normalize_decision(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("missing", mode="before")
    @classmethod
    def ensure_list(cls, v):
        if v is None:
            return None
        return split_csv(v)

    @property
    def approved(self) -> bool:
        return self.decision == Decision.APPROVE


class TranscriptMessage(BaseModel):
    """Represents a single entry in the job transcript."""
    role: Literal["user", "assistant"]
    agent: Literal["user", "chat", "decision", "calendar"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    # Decision entries are only shown in the debug view
    debug: bool = False


# Canonical form field names and the spellings the oracle or clients use for them
FORM_FIELDS = ("topic", "attendees", "urgency", "desired_timeframe", "background", "links")

_FIELD_SYNONYMS = {
    "topic": "topic",
    "title": "topic",
    "subject": "topic",
    "attendees": "attendees",
    "attendeeemails": "attendees",
    "participants": "attendees",
    "emails": "attendees",
    "urgency": "urgency",
    "priority": "urgency",
    "desiredtimeframe": "desired_timeframe",
    "timeframe": "desired_timeframe",
    "when": "desired_timeframe",
    "background": "background",
    "backgroundcontext": "background",
    "context": "background",
    "agenda": "background",
    "links": "links",
    "link": "links",
}


FIELD_LABELS = {
    "topic": "Topic",
    "attendees": "Attendees (emails)",
    "urgency": "Urgency",
    "desired_timeframe": "Desired timeframe",
    "background": "Background context",
    "links": "Links",
}


def canonical_field_name(name: str) -> str:
    """Map a field name as written by an oracle or client to the form's attribute name."""
    key = re.sub(r"\(.*?\)", "", name or "")
    key = re.sub(r"[^a-z0-9]", "", key.lower())
    return _FIELD_SYNONYMS.get(key, key)


def field_label(name: str) -> str:
    """Human-readable label for a field name in any spelling."""
    field = canonical_field_name(name)
    if field in FIELD_LABELS:
        return FIELD_LABELS[field]
    return re.sub(r"[_\-]+", " ", name).strip().capitalize()


def split_csv(value: Any) -> List[str]:
    """Accept a list or a comma-separated string; trim items and drop empties."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        raise ValueError("expected a list or a comma-separated string")
    return [str(item).strip() for item in items if item is not None and str(item).strip()]


class MeetingForm(BaseModel):
    """Canonical meeting details, whichever submission shape they arrived in."""
    model_config = ConfigDict(populate_by_name=True)

    topic: str = ""
    attendees: List[str] = Field(default_factory=list)
    urgency: str = ""
    desired_timeframe: str = Field(default="", alias="desiredTimeframe")
    background: str = ""
    links: List[str] = Field(default_factory=list)
    # Values for fields outside the standard set (e.g. a policy that asks for "budget")
    extra: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def route_unknown_keys(cls, data):
        if not isinstance(data, dict):
            return data
        routed: Dict[str, Any] = {}
        extra: Dict[str, str] = dict(data.get("extra") or {})
        for key, value in data.items():
            if key == "extra":
                continue
            field = canonical_field_name(key)
            if field in FORM_FIELDS:
                routed[field] = value
            elif value not in (None, ""):
                extra[key] = str(value).strip()
        routed["extra"] = extra
        return routed

    @field_validator("attendees", "links", mode="before")
    @classmethod
    def ensure_list(cls, v):
        return split_csv(v)

    @field_validator("topic", "urgency", "desired_timeframe", "background", mode="before")
    @classmethod
    def ensure_text(cls, v):
        if v is None:
            return ""
        return str(v).strip()

    def value_for(self, name: str) -> Any:
        field = canonical_field_name(name)
        if field in FORM_FIELDS:
            return getattr(self, field)
        for key, value in self.extra.items():
            if canonical_field_name(key) == field:
                return value
        return None

    def missing_from(self, required: List[str]) -> List[str]:
        """Return the required field names that have no value in this form."""
        return [name for name in required if not self.value_for(name)]


class Slot(BaseModel):
    """A candidate or chosen meeting time."""
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self):
        if self.end <= self.start:
            raise ValueError("slot end must be after start")
        return self

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


class Booking(BaseModel):
    """Confirmation returned by the scheduling provider."""
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(alias="eventId")
    html_link: Optional[str] = Field(default=None, alias="htmlLink")


class FormField(BaseModel):
    name: str
    label: str
    type: Literal["text", "textarea", "email_list", "url_list", "select"] = "text"
    required: bool = False
    options: Optional[List[str]] = None


class FormSchema(BaseModel):
    """Structured form sent to the client after an approval with missing details."""
    model_config = ConfigDict(populate_by_name=True)

    form_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="formId")
    title: str = "Meeting details"
    fields: List[FormField] = Field(default_factory=list)


class FormPrefill(BaseModel):
    topic: Optional[str] = None
    background: Optional[str] = None


class Requester(BaseModel):
    """Identity of the person asking for the meeting."""
    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or "unknown"


class PolicyConfig(BaseModel):
    """Owner-editable gatekeeping policy."""
    model_config = ConfigDict(populate_by_name=True)

    due_diligence_checklist: List[str] = Field(
        default_factory=lambda: [
            "Have you searched our docs / website?",
            "Do you have a clear agenda and desired outcome?",
            "Is email/async insufficient?",
        ],
        alias="dueDiligenceChecklist",
    )
    decision_policy: str = Field(default="conservative", alias="decisionPolicy")
    required_fields_on_approve: List[str] = Field(
        default_factory=lambda: ["topic", "attendees", "urgency", "desiredTimeframe"],
        alias="requiredFieldsOnApprove",
    )

    def merged(self, changes: Dict[str, Any]) -> "PolicyConfig":
        """Return a copy with ``changes`` applied; keys may use either spelling."""
        aliases = {name: info.alias or name for name, info in type(self).model_fields.items()}
        normalized = {aliases.get(key, key): value for key, value in changes.items()}
        return type(self).model_validate({**self.model_dump(by_alias=True), **normalized})


class Job(BaseModel):
    """
    One scheduling conversation and its lifecycle state.
    The record store holds the authoritative copy.
    """
    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    owner_user_id: Optional[str] = None
    state: JobState = JobState.AWAITING_INPUT
    messages: List[TranscriptMessage] = Field(default_factory=list)
    last_decision: Optional[DecisionResult] = None
    missing: List[str] = Field(default_factory=list)
    evaluated: bool = False
    form_schema: Optional[FormSchema] = None
    form: Optional[MeetingForm] = None
    slot: Optional[Slot] = None
    briefing: Optional[str] = None
    booking: Optional[Booking] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_transition_to(self, target: JobState) -> bool:
        return target in ALLOWED_TRANSITIONS[self.state]

    def transition_to(self, target: JobState) -> None:
        """Move to ``target``, refusing any edge outside the state machine."""
        if not self.can_transition_to(target):
            raise InvalidTransition(self.state.value, target.value)
        self.state = target
        self.updated_at = utcnow()

    def append_message(self, role: str, agent: str, content: str, debug: bool = False) -> TranscriptMessage:
        message = TranscriptMessage(role=role, agent=agent, content=content, debug=debug)
        self.messages.append(message)
        self.updated_at = utcnow()
        return message

    def user_messages(self) -> List[TranscriptMessage]:
        return [m for m in self.messages if m.role == "user"]

    def cumulative_user_input(self) -> str:
        """All user-authored contents, oldest first, as one evaluation input."""
        return "\n".join(m.content for m in self.user_messages())

    def transcript_tail(self, limit: int = 8, include_debug: bool = False) -> List[TranscriptMessage]:
        visible = [m for m in self.messages if include_debug or not m.debug]
        return visible[-limit:]
