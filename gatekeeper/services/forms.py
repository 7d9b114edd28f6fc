"""
Detail-gathering form: schema built from the missing fields and a prefill
drawn from what the user already wrote.
"""
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from gatekeeper.domain.models import (
    FORM_FIELDS,
    FormField,
    FormPrefill,
    FormSchema,
    Job,
    MeetingForm,
    canonical_field_name,
    field_label,
)
from gatekeeper.errors import InvalidInput

TOPIC_MAX_CHARS = 80
BACKGROUND_MAX_CHARS = 500
BACKGROUND_MESSAGES = 3

URGENCY_OPTIONS = ["low", "medium", "high"]

# Spelling used on the wire for each standard field
WIRE_NAMES = {
    "topic": "topic",
    "attendees": "attendees",
    "urgency": "urgency",
    "desired_timeframe": "desiredTimeframe",
    "background": "background",
    "links": "links",
}

_FIELD_TYPES = {
    "attendees": "email_list",
    "links": "url_list",
    "urgency": "select",
    "background": "textarea",
}

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+|\n")


def _form_field(name: str, required: bool) -> FormField:
    canonical = canonical_field_name(name)
    field_type = _FIELD_TYPES.get(canonical, "text")
    return FormField(
        name=WIRE_NAMES.get(canonical, name),
        label=field_label(name),
        type=field_type,
        required=required,
        options=URGENCY_OPTIONS if field_type == "select" else None,
    )


def build_form_schema(missing: List[str]) -> FormSchema:
    """Required fields first, in the order asked, then the remaining standard fields as optional."""
    fields: List[FormField] = []
    seen = set()
    for name in missing:
        canonical = canonical_field_name(name)
        if canonical in seen:
            continue
        seen.add(canonical)
        fields.append(_form_field(name, required=True))

    for name in FORM_FIELDS:
        if name not in seen:
            fields.append(_form_field(name, required=False))

    return FormSchema(fields=fields)


def _truncate(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def build_prefill(job: Job) -> FormPrefill:
    user_messages = job.user_messages()
    if not user_messages:
        return FormPrefill()

    last = user_messages[-1].content.strip()
    first_sentence = _SENTENCE_END.split(last, maxsplit=1)[0]
    recent = "\n".join(m.content.strip() for m in user_messages[-BACKGROUND_MESSAGES:])

    return FormPrefill(
        topic=_truncate(first_sentence, TOPIC_MAX_CHARS) or None,
        background=_truncate(recent, BACKGROUND_MAX_CHARS) or None,
    )


def normalize_form(values: Optional[Dict[str, Any]]) -> MeetingForm:
    """Validate a submitted form in either the free-form or schema-bound shape."""
    if values is None:
        raise InvalidInput("Missing form")
    if isinstance(values, MeetingForm):
        return values
    try:
        return MeetingForm.model_validate(values)
    except ValidationError as e:
        raise InvalidInput(f"Invalid form: {e.errors()[0].get('msg', 'malformed value')}") from e
