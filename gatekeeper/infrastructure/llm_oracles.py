"""
Decision and response oracles.

OpenAI-backed adapters use langchain prompt templates piped into ChatOpenAI;
the rule-based and template adapters are deterministic and run offline.
"""
import logging
import re
from typing import List, Optional

from langchain_core.exceptions import OutputParserException
from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from gatekeeper.config import DecisionOracleBackend, Settings, get_settings
from gatekeeper.domain.interfaces import IDecisionOracle, IResponseOracle
from gatekeeper.domain.models import (
    Decision,
    DecisionResult,
    PolicyConfig,
    TranscriptMessage,
    canonical_field_name,
    field_label,
)
from gatekeeper.errors import OracleUnavailable, ParseError
from gatekeeper.services.prompts import DECISION_PROMPT, PROMPT_VERSION, REPLY_PROMPT

logger = logging.getLogger(__name__)


def format_transcript(messages: List[TranscriptMessage]) -> str:
    return "\n".join(
        f"{'User' if m.role == 'user' else 'Assistant'}: {m.content}" for m in messages
    )


def _build_llm(settings: Settings, temperature: Optional[float] = None) -> Optional[ChatOpenAI]:
    if not settings.llm_enabled:
        return None
    return ChatOpenAI(
        model=settings.openai_model,
        temperature=settings.openai_temperature if temperature is None else temperature,
        openai_api_key=settings.openai_api_key,
        timeout=settings.llm_timeout_s,
    )


class OpenAIDecisionOracle(IDecisionOracle):
    """Decision oracle using structured output from an OpenAI chat model."""

    def __init__(self, settings: Optional[Settings] = None, llm: Optional[ChatOpenAI] = None):
        self.settings = settings or get_settings()
        self.llm = llm if llm is not None else _build_llm(self.settings)

    async def evaluate(self, transcript_text: str, policy: PolicyConfig) -> DecisionResult:
        if self.llm is None:
            raise OracleUnavailable("LLM disabled (no OPENAI_API_KEY)")

        prompt = ChatPromptTemplate.from_messages([
            ("system", DECISION_PROMPT["system"]),
            ("user", DECISION_PROMPT["user"]),
        ])
        chain = prompt | self.llm.with_structured_output(DecisionResult)
        logger.info(f"Evaluating with decision prompt v{PROMPT_VERSION}")

        try:
            result = await chain.ainvoke({
                "policy": policy.decision_policy,
                "required_fields": ", ".join(policy.required_fields_on_approve),
                "checklist": " | ".join(policy.due_diligence_checklist),
                "transcript": transcript_text,
            })
        except (OutputParserException, ValidationError) as e:
            raise ParseError(f"Decision output did not match schema: {e}") from e
        except Exception as e:
            raise OracleUnavailable(f"Decision oracle failed: {e}") from e

        logger.debug(f"Decision oracle output: {result}")
        if isinstance(result, DecisionResult):
            return result
        try:
            return DecisionResult.model_validate(result)
        except ValidationError as e:
            raise ParseError(f"Decision output did not match schema: {e}") from e


class OpenAIResponseOracle(IResponseOracle):
    """Reply oracle using free-text generation from an OpenAI chat model."""

    def __init__(self, settings: Optional[Settings] = None, llm: Optional[ChatOpenAI] = None):
        self.settings = settings or get_settings()
        self.llm = llm if llm is not None else _build_llm(self.settings, temperature=0.5)

    async def reply(
        self,
        transcript_tail: List[TranscriptMessage],
        missing: List[str],
        decision: DecisionResult,
    ) -> str:
        if self.llm is None:
            raise OracleUnavailable("LLM disabled (no OPENAI_API_KEY)")

        prompt = ChatPromptTemplate.from_messages([
            ("system", REPLY_PROMPT["system"]),
            ("user", REPLY_PROMPT["user"]),
        ])
        chain = prompt | self.llm | StrOutputParser()
        logger.debug(f"Replying with reply prompt v{PROMPT_VERSION}")

        try:
            text = await chain.ainvoke({
                "decision": decision.decision.value,
                "rationale": decision.rationale or "n/a",
                "missing": ", ".join(field_label(m) for m in missing) or "nothing",
                "transcript": format_transcript(transcript_tail),
            })
        except Exception as e:
            raise OracleUnavailable(f"Response oracle failed: {e}") from e

        text = (text or "").strip()
        if not text:
            raise ParseError("Response oracle returned an empty reply")
        return text


class RuleBasedDecisionOracle(IDecisionOracle):
    """
    Deterministic keyword oracle for offline runs.

    Approves only when the conversation asks for a meeting AND states what the
    meeting is for; a bare meeting request after an informational question is
    declined.
    """

    MEETING_PATTERN = re.compile(
        r"\b(meeting|meet|call|sync|schedule|get (?:\w+ )*together|workshop|catch up)\b",
        re.IGNORECASE,
    )
    PURPOSE_PATTERN = re.compile(
        r"\b(discuss\w*|align\w*|decid\w*|decision\w*|plan\w*|strateg\w*|brainstorm\w*|"
        r"implement\w*|priorit\w*|resourc\w*|roadmap|review\w*|kick-?off|collaborat\w*)\b",
        re.IGNORECASE,
    )
    QUESTION_PATTERN = re.compile(
        r"\b(how (?:do|can|to)|what(?:'s| is| are)|difference between|where (?:is|can)|why does)\b",
        re.IGNORECASE,
    )

    FIELD_DETECTORS = {
        "topic": re.compile(r"\b(about|regarding|re:|on the topic of)\b", re.IGNORECASE),
        "attendees": re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+"),
        "urgency": re.compile(r"\b(urgent\w*|asap|low|medium|high|critical|no rush)\b", re.IGNORECASE),
        "desired_timeframe": re.compile(
            r"\b(today|tomorrow|this week|next week|monday|tuesday|wednesday|thursday|friday|"
            r"\d{1,2}(?::\d{2})?\s?(?:am|pm))\b",
            re.IGNORECASE,
        ),
        "links": re.compile(r"https?://\S+"),
    }

    async def evaluate(self, transcript_text: str, policy: PolicyConfig) -> DecisionResult:
        wants_meeting = bool(self.MEETING_PATTERN.search(transcript_text))
        has_purpose = bool(self.PURPOSE_PATTERN.search(transcript_text))
        asked_question = bool(self.QUESTION_PATTERN.search(transcript_text))

        if not wants_meeting:
            rationale = "This reads as a question that a written answer can resolve."
            if not asked_question:
                rationale = "No meeting was requested."
            return DecisionResult(decision=Decision.DECLINE, rationale=rationale, missing=[])

        if not has_purpose:
            return DecisionResult(
                decision=Decision.DECLINE,
                rationale="A meeting was requested without saying what a live discussion would add.",
                missing=["agenda"],
            )

        missing = [
            name
            for name in policy.required_fields_on_approve
            if not self._mentions(canonical_field_name(name), transcript_text)
        ]
        return DecisionResult(
            decision=Decision.APPROVE,
            rationale="The request needs real-time collaboration with a stated purpose.",
            missing=missing,
        )

    def _mentions(self, field: str, text: str) -> bool:
        detector = self.FIELD_DETECTORS.get(field)
        return bool(detector and detector.search(text))


class TemplateResponseOracle(IResponseOracle):
    """Deterministic replies used when no language model is available."""

    async def reply(
        self,
        transcript_tail: List[TranscriptMessage],
        missing: List[str],
        decision: DecisionResult,
    ) -> str:
        has_context = any(m.role == "user" for m in transcript_tail)
        opener = "Thanks for the details so far." if has_context else "Thanks for reaching out."

        if decision.approved:
            if missing:
                return f"{opener} One more thing before I book it: {field_label(missing[0]).lower()}?"
            return f"{opener} I have everything I need and will line up a time."

        reason = decision.rationale or "I don't think a meeting is needed yet."
        if missing:
            question = f"Could you tell me more about the {field_label(missing[0]).lower()}?"
        else:
            question = "If a live conversation would still help, what would it achieve that a written answer can't?"
        return f"{opener} {reason} {question}"


def get_decision_oracle(settings: Optional[Settings] = None) -> IDecisionOracle:
    """Get the configured decision oracle."""
    settings = settings or get_settings()
    if settings.decision_oracle == DecisionOracleBackend.RULES:
        return RuleBasedDecisionOracle()
    return OpenAIDecisionOracle(settings)


def get_response_oracle(settings: Optional[Settings] = None) -> IResponseOracle:
    """Get the reply oracle; template replies when no API key is configured."""
    settings = settings or get_settings()
    if settings.llm_enabled:
        return OpenAIResponseOracle(settings)
    return TemplateResponseOracle()
