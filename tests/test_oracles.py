"""
Decision and response oracle tests.
"""
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from langchain_core.exceptions import OutputParserException

from gatekeeper.config import DecisionOracleBackend
from gatekeeper.domain.models import Decision, DecisionResult, PolicyConfig, TranscriptMessage
from gatekeeper.errors import OracleUnavailable, ParseError
from gatekeeper.infrastructure.llm_oracles import (
    OpenAIDecisionOracle,
    OpenAIResponseOracle,
    RuleBasedDecisionOracle,
    TemplateResponseOracle,
    format_transcript,
    get_decision_oracle,
    get_response_oracle,
)
from gatekeeper.services.prompts import PROMPT_VERSION


def chain_returning(value=None, error=None):
    """A stand-in for ``prompt | llm...`` whose ainvoke returns or raises."""
    chain = MagicMock()
    chain.ainvoke = AsyncMock(return_value=value, side_effect=error)
    return chain


class TestRuleBasedDecisionOracle:

    @pytest.fixture
    def oracle(self):
        return RuleBasedDecisionOracle()

    @pytest.mark.asyncio
    async def test_informational_question_declined(self, oracle):
        result = await oracle.evaluate("How do I reset my password?", PolicyConfig())
        assert result.decision == Decision.DECLINE
        assert result.missing == []

    @pytest.mark.asyncio
    async def test_justified_meeting_approved_with_missing_fields(self, oracle):
        result = await oracle.evaluate(
            "Can we have a meeting about Q4 strategy with the team to align on resourcing?",
            PolicyConfig(),
        )
        assert result.decision == Decision.APPROVE
        assert result.missing == ["attendees", "urgency", "desiredTimeframe"]

    @pytest.mark.asyncio
    async def test_mentioned_fields_not_reported_missing(self, oracle):
        result = await oracle.evaluate(
            "Let's schedule a call about the roadmap review with ana@example.com next week, it's urgent.",
            PolicyConfig(),
        )
        assert result.approved
        assert result.missing == []

    @pytest.mark.asyncio
    async def test_bare_meeting_request_declined(self, oracle):
        result = await oracle.evaluate("What's the difference between X and Y?\nCan we have a meeting?", PolicyConfig())
        assert result.decision == Decision.DECLINE
        assert result.missing == ["agenda"]

    @pytest.mark.asyncio
    async def test_later_message_can_justify_earlier_request(self, oracle):
        result = await oracle.evaluate("Can we have a meeting?\nWe need to decide on the vendor.", PolicyConfig())
        assert result.approved


class TestTemplateResponseOracle:

    @pytest.mark.asyncio
    async def test_decline_repeats_rationale(self):
        reply = await TemplateResponseOracle().reply(
            [TranscriptMessage(role="user", agent="user", content="hi")],
            [],
            DecisionResult(decision="DECLINE", rationale="Docs cover this."),
        )
        assert "Docs cover this." in reply
        assert reply.count("?") == 1

    @pytest.mark.asyncio
    async def test_asks_about_first_missing_field_only(self):
        reply = await TemplateResponseOracle().reply(
            [], ["desiredTimeframe", "urgency"], DecisionResult(decision="APPROVE")
        )
        assert "desired timeframe" in reply
        assert "urgency" not in reply


class TestOpenAIDecisionOracle:

    @pytest.fixture
    def oracle(self, settings):
        settings.openai_api_key = "sk-test-key"
        return OpenAIDecisionOracle(settings, llm=MagicMock())

    @pytest.mark.asyncio
    async def test_disabled_without_key(self, settings):
        oracle = OpenAIDecisionOracle(settings)
        assert oracle.llm is None
        with pytest.raises(OracleUnavailable):
            await oracle.evaluate("Let's meet", PolicyConfig())

    @pytest.mark.asyncio
    async def test_structured_output_returned(self, oracle):
        expected = DecisionResult(decision="APPROVE", rationale="ok", missing=["topic"])
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value = chain_returning(expected)
            result = await oracle.evaluate("Let's plan Q4", PolicyConfig())

        assert result == expected
        oracle.llm.with_structured_output.assert_called_once_with(DecisionResult)

    @pytest.mark.asyncio
    async def test_logs_prompt_version(self, oracle, caplog):
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value = chain_returning(
                DecisionResult(decision="DECLINE")
            )
            with caplog.at_level(logging.INFO, logger="gatekeeper.infrastructure.llm_oracles"):
                await oracle.evaluate("hi", PolicyConfig())

        assert f"decision prompt v{PROMPT_VERSION}" in caplog.text

    @pytest.mark.asyncio
    async def test_dict_output_validated(self, oracle):
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value = chain_returning(
                {"decision": "decline", "rationale": "no", "missing": "agenda"}
            )
            result = await oracle.evaluate("hi", PolicyConfig())

        assert result.decision == Decision.DECLINE
        assert result.missing == ["agenda"]

    @pytest.mark.asyncio
    async def test_invalid_output_is_parse_error(self, oracle):
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value = chain_returning({"decision": "MAYBE"})
            with pytest.raises(ParseError):
                await oracle.evaluate("hi", PolicyConfig())

    @pytest.mark.asyncio
    async def test_parser_exception_is_parse_error(self, oracle):
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value = chain_returning(
                error=OutputParserException("not json")
            )
            with pytest.raises(ParseError):
                await oracle.evaluate("hi", PolicyConfig())

    @pytest.mark.asyncio
    async def test_transport_error_is_unavailable(self, oracle):
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value = chain_returning(
                error=TimeoutError("timed out")
            )
            with pytest.raises(OracleUnavailable) as exc_info:
                await oracle.evaluate("hi", PolicyConfig())

        assert not isinstance(exc_info.value, ParseError)


class TestOpenAIResponseOracle:

    @pytest.fixture
    def oracle(self, settings):
        settings.openai_api_key = "sk-test-key"
        return OpenAIResponseOracle(settings, llm=MagicMock())

    @pytest.mark.asyncio
    async def test_reply_text_stripped(self, oracle):
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value.__or__.return_value = chain_returning(
                "  Sounds good. Who should attend?  "
            )
            reply = await oracle.reply([], ["attendees"], DecisionResult(decision="APPROVE"))

        assert reply == "Sounds good. Who should attend?"

    @pytest.mark.asyncio
    async def test_empty_reply_is_parse_error(self, oracle):
        with patch("gatekeeper.infrastructure.llm_oracles.ChatPromptTemplate") as prompt_cls:
            prompt_cls.from_messages.return_value.__or__.return_value.__or__.return_value = chain_returning("   ")
            with pytest.raises(ParseError):
                await oracle.reply([], [], DecisionResult(decision="DECLINE"))


class TestFactories:

    def test_rules_backend(self, settings):
        assert isinstance(get_decision_oracle(settings), RuleBasedDecisionOracle)

    def test_openai_backend(self, settings):
        settings.decision_oracle = DecisionOracleBackend.OPENAI
        assert isinstance(get_decision_oracle(settings), OpenAIDecisionOracle)

    def test_template_replies_without_key(self, settings):
        assert isinstance(get_response_oracle(settings), TemplateResponseOracle)


def test_format_transcript():
    messages = [
        TranscriptMessage(role="user", agent="user", content="hi"),
        TranscriptMessage(role="assistant", agent="chat", content="hello"),
    ]
    assert format_transcript(messages) == "User: hi\nAssistant: hello"
