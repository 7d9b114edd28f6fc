"""Owner briefing compiled from the submitted meeting details."""
from typing import Optional

from gatekeeper.domain.models import MeetingForm, Requester, field_label


def build_briefing(requester: Optional[Requester], form: MeetingForm) -> str:
    """One 'Label: value' line per field, requester first."""
    requester = requester or Requester()
    lines = [
        f"Requester: {requester.display_name}",
        f"Topic: {form.topic}",
        f"Attendees: {', '.join(form.attendees)}",
        f"Urgency: {form.urgency}",
        f"Desired timeframe: {form.desired_timeframe}",
        f"Background: {form.background}",
        f"Links: {', '.join(form.links)}",
    ]
    for key, value in form.extra.items():
        lines.append(f"{field_label(key)}: {value}")
    return "\n".join(lines)
