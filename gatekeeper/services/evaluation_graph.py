"""
Evaluation pipeline - LangGraph workflow run for every user message.

Graph structure:

    decide ──APPROVE──→ suggest ──→ record ─┬─missing──→ gather ─┐
       │                              ↑     └─otherwise→ reply ──┤
       └────────DECLINE───────────────┘                          ↓
                                                             finalize → END

Each node persists the job before emitting the events that describe it, so a
client that reconnects always finds the record at least as new as the stream.
"""
import logging
from typing import Any, Dict, List, Optional

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from gatekeeper.config import Settings, get_settings
from gatekeeper.domain.interfaces import (
    IAvailabilityProvider,
    IDecisionOracle,
    IRecordStore,
    IResponseOracle,
)
from gatekeeper.domain.models import (
    Decision,
    DecisionResult,
    Job,
    JobState,
    PolicyConfig,
    Slot,
)
from gatekeeper.errors import GatekeeperError
from gatekeeper.infrastructure.event_sink import EventSinkRegistry
from gatekeeper.infrastructure.llm_oracles import TemplateResponseOracle
from gatekeeper.services.availability import parse_day_window
from gatekeeper.services.forms import build_form_schema, build_prefill

logger = logging.getLogger(__name__)


class EvaluationState(TypedDict, total=False):
    """State passed between pipeline nodes."""
    job: Job
    policy: PolicyConfig
    decision: DecisionResult
    slots: List[Slot]


def describe_decision(decision: DecisionResult, missing: List[str]) -> str:
    """Transcript text for a decision entry."""
    text = f"{decision.decision.value}: {decision.rationale}".strip()
    if missing:
        text += f" Missing: {', '.join(missing)}."
    return text


def _slot_payload(slot: Slot) -> Dict[str, str]:
    return {"start": slot.start.isoformat(), "end": slot.end.isoformat()}


class EvaluationPipeline:
    """
    Runs decision, availability lookup, form gathering and reply for one message.

    Oracle failures degrade to a DECLINE and availability failures to a log
    event; neither aborts the run.
    """

    def __init__(
        self,
        record_store: IRecordStore,
        sinks: EventSinkRegistry,
        decision_oracle: IDecisionOracle,
        response_oracle: IResponseOracle,
        availability: IAvailabilityProvider,
        settings: Optional[Settings] = None,
        fallback_responder: Optional[IResponseOracle] = None,
    ):
        self.record_store = record_store
        self.sinks = sinks
        self.decision_oracle = decision_oracle
        self.response_oracle = response_oracle
        self.availability = availability
        self.settings = settings or get_settings()
        self.fallback_responder = fallback_responder or TemplateResponseOracle()
        self.workflow = self._build_graph()

    def _build_graph(self):
        workflow = StateGraph(EvaluationState)

        workflow.add_node("decide", self.decide_node)
        workflow.add_node("suggest", self.suggest_node)
        workflow.add_node("record", self.record_node)
        workflow.add_node("gather", self.gather_node)
        workflow.add_node("reply", self.reply_node)
        workflow.add_node("finalize", self.finalize_node)

        workflow.set_entry_point("decide")

        workflow.add_conditional_edges(
            "decide",
            self._route_after_decide,
            {"suggest": "suggest", "record": "record"},
        )
        workflow.add_edge("suggest", "record")
        workflow.add_conditional_edges(
            "record",
            self._route_after_record,
            {"gather": "gather", "reply": "reply"},
        )
        workflow.add_edge("gather", "finalize")
        workflow.add_edge("reply", "finalize")
        workflow.add_edge("finalize", END)

        return workflow.compile()

    async def run(self, job: Job, policy: PolicyConfig) -> Job:
        """Evaluate a job already moved to ``evaluating``; returns it in its next resting state."""
        result = await self.workflow.ainvoke({"job": job, "policy": policy, "slots": []})
        return result["job"]

    def _emit(self, job: Job, event: str, data: Dict[str, Any]) -> None:
        self.sinks.send(job.job_id, event, data)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route_after_decide(self, state: EvaluationState) -> str:
        return "suggest" if state["decision"].approved else "record"

    def _route_after_record(self, state: EvaluationState) -> str:
        job = state["job"]
        if state["decision"].approved and job.missing:
            return "gather"
        return "reply"

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def decide_node(self, state: EvaluationState) -> Dict[str, Any]:
        job = state["job"]
        policy = state["policy"]
        transcript_text = job.cumulative_user_input()
        logger.info(f"[Decide] Evaluating job {job.job_id} over {len(job.user_messages())} user message(s)")

        self._emit(job, "tool", {
            "name": "evaluate_request",
            "status": "call",
            "actor": "decision",
            "args": {"messages": len(job.user_messages()), "policy": policy.decision_policy},
        })

        error: Optional[str] = None
        try:
            decision = await self.decision_oracle.evaluate(transcript_text, policy)
        except GatekeeperError as e:
            logger.warning(f"[Decide] Oracle unavailable, declining: {e.message}")
            error = e.message
            decision = DecisionResult(decision=Decision.DECLINE, rationale=error)
        except Exception as e:
            logger.exception(f"[Decide] Oracle failed, declining: {e}")
            error = f"Decision oracle error: {e}"
            decision = DecisionResult(decision=Decision.DECLINE, rationale=error)

        result: Dict[str, Any] = {
            "name": "evaluate_request",
            "status": "result",
            "actor": "decision",
            "result": decision.model_dump(mode="json"),
        }
        if error is not None:
            result["error"] = error
        self._emit(job, "tool", result)
        payload = decision.model_dump(mode="json")
        payload["missing"] = payload["missing"] or []
        self._emit(job, "decision", payload)

        logger.info(f"[Decide] {decision.decision.value} for job {job.job_id}")
        return {"decision": decision}

    async def suggest_node(self, state: EvaluationState) -> Dict[str, Any]:
        job = state["job"]
        settings = self.settings
        args = {
            "windowDays": settings.availability_window_days,
            "slotMinutes": settings.default_meeting_minutes,
            "ownerOnly": True,
        }
        self._emit(job, "tool", {"name": "suggest_slots", "status": "call", "actor": "calendar", "args": args})

        slots: List[Slot] = []
        result: Dict[str, Any] = {"name": "suggest_slots", "status": "result", "actor": "calendar"}
        try:
            day_window = parse_day_window(settings.availability_day_start, settings.availability_day_end)
            slots = await self.availability.suggest(
                settings.availability_window_days,
                settings.default_meeting_minutes,
                day_window,
                owner_only=True,
            )
        except Exception as e:
            logger.warning(f"[Suggest] Availability lookup failed for job {job.job_id}: {e}")
            self._emit(job, "log", {"msg": f"Availability lookup failed: {e}"})
            result["error"] = str(e)

        logger.info(f"[Suggest] {len(slots)} slot(s) for job {job.job_id}")
        result["result"] = {"slots": [_slot_payload(s) for s in slots]}
        self._emit(job, "tool", result)
        return {"slots": slots}

    async def record_node(self, state: EvaluationState) -> Dict[str, Any]:
        job = state["job"]
        decision = state["decision"]

        if decision.approved and decision.missing is None:
            missing = list(state["policy"].required_fields_on_approve)
        else:
            missing = list(decision.missing or [])

        job.last_decision = decision
        job.missing = missing
        job.evaluated = True
        message = job.append_message("assistant", "decision", describe_decision(decision, missing), debug=True)
        await self.record_store.write(job.job_id, job)

        self._emit(job, "agent", {
            "role": message.role,
            "agent": message.agent,
            "content": message.content,
            "debug": True,
        })
        return {"job": job}

    async def gather_node(self, state: EvaluationState) -> Dict[str, Any]:
        job = state["job"]
        logger.info(f"[Gather] Asking for {job.missing} on job {job.job_id}")

        job.transition_to(JobState.APPROVED_NEEDS_DETAILS)
        schema = build_form_schema(job.missing)
        prefill = build_prefill(job)
        job.form_schema = schema
        await self.record_store.write(job.job_id, job)

        self._emit(job, "gather", {"ask": list(job.missing)})
        self._emit(job, "form", {
            "schema": schema.model_dump(mode="json", by_alias=True),
            "prefill": prefill.model_dump(exclude_none=True),
        })
        return {"job": job}

    async def reply_node(self, state: EvaluationState) -> Dict[str, Any]:
        job = state["job"]
        decision = state["decision"]
        tail = job.transcript_tail()

        try:
            text = await self.response_oracle.reply(tail, job.missing, decision)
        except Exception as e:
            logger.warning(f"[Reply] Response oracle failed, using template reply: {e}")
            text = await self.fallback_responder.reply(tail, job.missing, decision)

        job.append_message("assistant", "chat", text)
        job.transition_to(JobState.READY_TO_SCHEDULE if decision.approved else JobState.AWAITING_INPUT)
        await self.record_store.write(job.job_id, job)

        self._emit(job, "chat", {"role": "assistant", "agent": "chat", "content": text})
        return {"job": job}

    async def finalize_node(self, state: EvaluationState) -> Dict[str, Any]:
        job = state["job"]
        logger.info(f"[Finalize] Job {job.job_id} now {job.state.value}")
        self._emit(job, "state", {"state": job.state.value})
        return {"job": job}
