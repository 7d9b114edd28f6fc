"""
Orchestrator - sequences user messages, evaluation, detail gathering and booking.

The record store holds the authoritative job; every public operation loads it,
mutates it under the job's lock, persists it and then emits events to the
job's current subscriber.
"""
import asyncio
import logging
import weakref
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from gatekeeper.config import Settings, get_settings
from gatekeeper.domain.interfaces import (
    IAvailabilityProvider,
    IDecisionOracle,
    IPolicyStore,
    IRecordStore,
    IResponseOracle,
    ISchedulingProvider,
)
from gatekeeper.domain.models import (
    SUBMITTABLE_STATES,
    Booking,
    Job,
    JobState,
    MeetingForm,
    PolicyConfig,
    Requester,
    Slot,
)
from gatekeeper.errors import InvalidInput, InvalidState, NotFound, ProviderError, RecordStoreError
from gatekeeper.infrastructure.event_sink import EventSink, EventSinkRegistry
from gatekeeper.services.availability import default_slot, parse_day_window
from gatekeeper.services.briefing import build_briefing
from gatekeeper.services.evaluation_graph import EvaluationPipeline
from gatekeeper.services.forms import normalize_form

logger = logging.getLogger(__name__)

BRIEFING_NOTICE = "I prepared a briefing based on your details. Scheduling now..."


class Orchestrator:
    """Conversation, decision and scheduling state machine for meeting requests."""

    def __init__(
        self,
        record_store: IRecordStore,
        policy_store: IPolicyStore,
        sinks: EventSinkRegistry,
        decision_oracle: IDecisionOracle,
        response_oracle: IResponseOracle,
        availability: IAvailabilityProvider,
        scheduler: ISchedulingProvider,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.record_store = record_store
        self.policy_store = policy_store
        self.sinks = sinks
        self.availability = availability
        self.scheduler = scheduler
        self.settings = settings or get_settings()
        tz = ZoneInfo(self.settings.app_timezone)
        self.clock = clock or (lambda: datetime.now(tz))
        self.pipeline = EvaluationPipeline(
            record_store=record_store,
            sinks=sinks,
            decision_oracle=decision_oracle,
            response_oracle=response_oracle,
            availability=availability,
            settings=self.settings,
        )
        # Entries disappear once no call holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    async def _load(self, job_id: str) -> Job:
        job = await self.record_store.read(job_id) if job_id else None
        if job is None:
            raise NotFound(f"Unknown jobId: {job_id}")
        return job

    def _emit(self, job: Job, event: str, data: Dict[str, Any]) -> None:
        self.sinks.send(job.job_id, event, data)

    def _emit_state(self, job: Job) -> None:
        self._emit(job, "state", {"state": job.state.value})

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    async def start(self, initial_message: Optional[str] = None, owner_user_id: Optional[str] = None) -> str:
        """Create a job awaiting input, optionally seeded with the user's first message."""
        job = Job(owner_user_id=owner_user_id)
        if initial_message and initial_message.strip():
            job.append_message("user", "user", initial_message.strip())
        await self.record_store.write(job.job_id, job)
        logger.info(f"Started job {job.job_id}")
        return job.job_id

    async def subscribe(self, job_id: str) -> EventSink:
        """Attach a new event sink, replacing any previous subscriber, and send a snapshot."""
        job = await self._load(job_id)
        sink = self.sinks.attach(job_id)
        sink.send("log", {"msg": f"Connected to job {job_id}"})
        sink.send("state", {"state": job.state.value})
        return sink

    async def get_job(self, job_id: str) -> Job:
        return await self._load(job_id)

    async def receive_message(self, job_id: str, content: str) -> None:
        """
        Append a user message and re-evaluate the whole conversation.

        Raises:
            NotFound: unknown job
            InvalidInput: blank content
            InvalidState: job is scheduling or finished
        """
        content = (content or "").strip()
        if not content:
            raise InvalidInput("Message content is required", fields=["content"])

        async with self._lock(job_id):
            job = await self._load(job_id)
            if not job.can_transition_to(JobState.EVALUATING):
                raise InvalidState(f"Job is {job.state.value} and no longer accepts messages")

            job.append_message("user", "user", content)
            job.transition_to(JobState.EVALUATING)
            job.error = None
            await self.record_store.write(job.job_id, job)
            self._emit(job, "chat", {"role": "user", "agent": "user", "content": content})
            self._emit_state(job)

            try:
                policy = await self.policy_store.load()
                await self.pipeline.run(job, policy)
            except Exception as e:
                logger.error(f"Evaluation failed for job {job_id}: {e}")
                await self._recover_from_evaluation(job, e)
                raise

    async def _recover_from_evaluation(self, job: Job, error: Exception) -> None:
        """Return a job stuck in evaluation to awaiting_input so the user can retry."""
        if job.state == JobState.EVALUATING:
            job.transition_to(JobState.AWAITING_INPUT)
        job.error = str(error)
        try:
            await self.record_store.write(job.job_id, job)
        except RecordStoreError as e:
            logger.error(f"Could not persist recovered job {job.job_id}: {e.message}")
        self._emit(job, "error", {"error": str(error)})
        self._emit_state(job)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def submit_details(
        self,
        job_id: str,
        form: Union[MeetingForm, Dict[str, Any], None],
        slot: Union[Slot, Dict[str, Any], None] = None,
        form_id: Optional[str] = None,
        requester: Optional[Requester] = None,
    ) -> Booking:
        """
        Accept meeting details, brief the owner and book the meeting.

        Raises:
            NotFound: unknown job
            InvalidState: job is not approved or not waiting for details
            InvalidInput: required fields missing, bad slot or stale formId
            ProviderError: the calendar booking failed; the job is left in ``error``
        """
        async with self._lock(job_id):
            job = await self._load(job_id)

            if job.state not in SUBMITTABLE_STATES:
                raise InvalidState(f"Job is {job.state.value}; details can't be submitted")
            if job.last_decision is None or not job.last_decision.approved:
                raise InvalidState("Meeting request has not been approved")

            meeting_form = normalize_form(form)
            if form_id is not None and (job.form_schema is None or job.form_schema.form_id != form_id):
                raise InvalidInput(f"Unknown formId: {form_id}", fields=["formId"])

            missing = meeting_form.missing_from(job.missing)
            if missing:
                raise InvalidInput(f"Missing required fields: {', '.join(missing)}", fields=missing)

            chosen = self._resolve_slot(slot)

            job.form = meeting_form
            job.slot = chosen
            if job.state == JobState.APPROVED_NEEDS_DETAILS:
                job.transition_to(JobState.READY_TO_SCHEDULE)
            job.transition_to(JobState.SCHEDULING)

            briefing = build_briefing(requester, meeting_form)
            job.briefing = briefing
            job.append_message("assistant", "calendar", briefing)
            job.append_message("assistant", "chat", BRIEFING_NOTICE)
            await self.record_store.write(job.job_id, job)

            self._emit(job, "agent", {
                "role": "assistant",
                "agent": "calendar",
                "content": briefing,
                "briefing": briefing,
            })
            self._emit(job, "chat", {"role": "assistant", "agent": "chat", "content": BRIEFING_NOTICE})

            return await self._book(job, meeting_form, chosen, briefing)

    def _resolve_slot(self, slot: Union[Slot, Dict[str, Any], None]) -> Slot:
        if slot is None:
            return default_slot(self.clock(), self.settings.default_meeting_minutes)
        if isinstance(slot, Slot):
            return slot
        try:
            return Slot.model_validate(slot)
        except ValidationError as e:
            raise InvalidInput("Invalid slot: end must be after start", fields=["slot"]) from e

    async def _book(self, job: Job, form: MeetingForm, slot: Slot, briefing: str) -> Booking:
        title = form.topic or "Meeting"
        self._emit(job, "tool", {
            "name": "create_event",
            "status": "call",
            "actor": "calendar",
            "args": {
                "title": title,
                "attendees": list(form.attendees),
                "start": slot.start.isoformat(),
                "end": slot.end.isoformat(),
            },
        })

        try:
            booking = await self.scheduler.book(slot, form.attendees, title, briefing)
        except Exception as e:
            error = e if isinstance(e, ProviderError) else ProviderError(f"Calendar error: {e}")
            logger.error(f"Booking failed for job {job.job_id}: {error.message}")
            job.error = error.message
            job.transition_to(JobState.ERROR)
            await self.record_store.write(job.job_id, job)

            self._emit(job, "tool", {
                "name": "create_event",
                "status": "result",
                "actor": "calendar",
                "error": error.message,
            })
            self._emit(job, "error", {"error": error.message})
            self._emit_state(job)
            self.sinks.close(job.job_id)
            if error is e:
                raise
            raise error from e

        job.booking = booking
        job.transition_to(JobState.NOTIFIED)
        await self.record_store.write(job.job_id, job)
        logger.info(f"Scheduled job {job.job_id} as event {booking.event_id}")

        self._emit(job, "tool", {
            "name": "create_event",
            "status": "result",
            "actor": "calendar",
            "result": booking.model_dump(by_alias=True),
        })
        self._emit(job, "scheduled", {"eventId": booking.event_id, "htmlLink": booking.html_link})
        self._emit(job, "done", {"status": "SCHEDULED"})
        self._emit_state(job)
        self.sinks.close(job.job_id)
        return booking

    # ------------------------------------------------------------------
    # Owner tools
    # ------------------------------------------------------------------

    async def suggest_availability(
        self,
        window_days: Optional[int] = None,
        slot_minutes: Optional[int] = None,
        owner_only: bool = True,
    ) -> List[Slot]:
        settings = self.settings
        day_window = parse_day_window(settings.availability_day_start, settings.availability_day_end)
        return await self.availability.suggest(
            window_days or settings.availability_window_days,
            slot_minutes or settings.default_meeting_minutes,
            day_window,
            owner_only=owner_only,
        )

    async def get_policy(self) -> PolicyConfig:
        return await self.policy_store.load()

    async def update_policy(self, changes: Dict[str, Any]) -> PolicyConfig:
        policy = await self.policy_store.update(changes)
        logger.info("Owner policy updated")
        return policy
