"""
Domain model tests: state machine, decision parsing, form normalization.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from gatekeeper.domain.models import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    Decision,
    DecisionResult,
    Job,
    JobState,
    MeetingForm,
    PolicyConfig,
    Slot,
    canonical_field_name,
    field_label,
)
from gatekeeper.errors import InvalidState, InvalidTransition


class TestJobStateMachine:

    @pytest.mark.parametrize("current,target", [
        (JobState.AWAITING_INPUT, JobState.EVALUATING),
        (JobState.EVALUATING, JobState.AWAITING_INPUT),
        (JobState.EVALUATING, JobState.APPROVED_NEEDS_DETAILS),
        (JobState.EVALUATING, JobState.READY_TO_SCHEDULE),
        (JobState.APPROVED_NEEDS_DETAILS, JobState.READY_TO_SCHEDULE),
        (JobState.READY_TO_SCHEDULE, JobState.SCHEDULING),
        (JobState.SCHEDULING, JobState.NOTIFIED),
        (JobState.SCHEDULING, JobState.ERROR),
    ])
    def test_allowed_edges(self, current, target):
        job = Job(state=current)
        job.transition_to(target)
        assert job.state == target

    @pytest.mark.parametrize("current,target", [
        (JobState.AWAITING_INPUT, JobState.SCHEDULING),
        (JobState.AWAITING_INPUT, JobState.NOTIFIED),
        (JobState.EVALUATING, JobState.SCHEDULING),
        (JobState.APPROVED_NEEDS_DETAILS, JobState.SCHEDULING),
        (JobState.SCHEDULING, JobState.AWAITING_INPUT),
    ])
    def test_disallowed_edges(self, current, target):
        job = Job(state=current)
        with pytest.raises(InvalidTransition):
            job.transition_to(target)
        assert job.state == current

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_have_no_exits(self, terminal):
        assert ALLOWED_TRANSITIONS[terminal] == frozenset()
        job = Job(state=terminal)
        assert job.is_terminal
        for target in JobState:
            assert not job.can_transition_to(target)

    def test_invalid_transition_is_invalid_state(self):
        assert issubclass(InvalidTransition, InvalidState)
        assert InvalidTransition("notified", "evaluating").status_code == 409

    def test_transition_touches_updated_at(self):
        job = Job()
        before = job.updated_at
        job.transition_to(JobState.EVALUATING)
        assert job.updated_at >= before


class TestJobTranscript:

    def test_cumulative_user_input_oldest_first(self):
        job = Job()
        job.append_message("user", "user", "first")
        job.append_message("assistant", "chat", "reply")
        job.append_message("assistant", "decision", "DECLINE: x", debug=True)
        job.append_message("user", "user", "second")

        assert job.cumulative_user_input() == "first\nsecond"

    def test_transcript_tail_hides_debug_entries(self):
        job = Job()
        job.append_message("user", "user", "hi")
        job.append_message("assistant", "decision", "APPROVE", debug=True)
        job.append_message("assistant", "chat", "hello")

        assert [m.content for m in job.transcript_tail()] == ["hi", "hello"]
        assert len(job.transcript_tail(include_debug=True)) == 3
        assert [m.content for m in job.transcript_tail(limit=1)] == ["hello"]

    def test_job_ids_are_unique(self):
        assert Job().job_id != Job().job_id


class TestDecisionResult:

    def test_lowercase_decision_normalized(self):
        result = DecisionResult.model_validate({"decision": " approve ", "rationale": "ok"})
        assert result.decision == Decision.APPROVE
        assert result.approved

    def test_missing_accepts_csv(self):
        assert DecisionResult(decision="DECLINE", missing="topic, agenda ,").missing == ["topic", "agenda"]

    def test_absent_missing_differs_from_empty(self):
        assert DecisionResult(decision="APPROVE").missing is None
        assert DecisionResult(decision="APPROVE", missing=None).missing is None
        assert DecisionResult(decision="APPROVE", missing=[]).missing == []

    def test_unknown_decision_rejected(self):
        with pytest.raises(ValidationError):
            DecisionResult.model_validate({"decision": "MAYBE"})


class TestMeetingForm:

    def test_attendees_csv_and_list_are_equal(self):
        from_csv = MeetingForm.model_validate({"attendees": "a@x.com, b@x.com"})
        from_list = MeetingForm.model_validate({"attendees": ["a@x.com", "b@x.com"]})
        assert from_csv.attendees == from_list.attendees == ["a@x.com", "b@x.com"]

    def test_list_items_trimmed_and_empties_dropped(self):
        form = MeetingForm.model_validate({"attendees": [" a@x.com ", "", None], "links": "https://a, ,https://b"})
        assert form.attendees == ["a@x.com"]
        assert form.links == ["https://a", "https://b"]

    def test_both_timeframe_spellings(self):
        camel = MeetingForm.model_validate({"desiredTimeframe": "next week"})
        snake = MeetingForm.model_validate({"desired_timeframe": "next week"})
        assert camel.desired_timeframe == snake.desired_timeframe == "next week"

    def test_unknown_keys_kept_as_extra(self):
        form = MeetingForm.model_validate({"topic": "Budget", "budget": "10k", "notes": ""})
        assert form.extra == {"budget": "10k"}
        assert form.value_for("budget") == "10k"

    def test_missing_from_uses_any_spelling(self):
        form = MeetingForm.model_validate({"attendees": "a@x.com", "desiredTimeframe": "Friday"})
        assert form.missing_from(["Attendees (emails)", "desired_timeframe", "urgency"]) == ["urgency"]

    def test_dump_and_reload_keeps_values(self):
        form = MeetingForm.model_validate({"topic": "Q4", "desiredTimeframe": "soon", "budget": "10k"})
        reloaded = MeetingForm.model_validate(form.model_dump(by_alias=True))
        assert reloaded == form


class TestFieldNames:

    @pytest.mark.parametrize("raw,expected", [
        ("desiredTimeframe", "desired_timeframe"),
        ("Desired timeframe", "desired_timeframe"),
        ("Attendees (emails)", "attendees"),
        ("agenda", "background"),
        ("title", "topic"),
        ("budget", "budget"),
    ])
    def test_canonical_field_name(self, raw, expected):
        assert canonical_field_name(raw) == expected

    def test_field_label(self):
        assert field_label("desiredTimeframe") == "Desired timeframe"
        assert field_label("budget_owner") == "Budget owner"


class TestSlot:

    def test_end_must_follow_start(self):
        now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            Slot(start=now, end=now)

    def test_duration(self):
        now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        assert Slot(start=now, end=now + timedelta(minutes=45)).duration_minutes == 45


class TestPolicyConfig:

    def test_defaults(self):
        policy = PolicyConfig()
        assert policy.decision_policy == "conservative"
        assert policy.required_fields_on_approve == ["topic", "attendees", "urgency", "desiredTimeframe"]
        assert len(policy.due_diligence_checklist) == 3

    def test_merged_accepts_both_spellings(self):
        policy = PolicyConfig().merged({"decision_policy": "lenient", "requiredFieldsOnApprove": ["topic"]})
        assert policy.decision_policy == "lenient"
        assert policy.required_fields_on_approve == ["topic"]
        assert policy.model_dump(by_alias=True)["decisionPolicy"] == "lenient"
