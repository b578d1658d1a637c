"""
Unit tests for the Conversation Coordinator
Tests context lifecycle, LLM turns, fallbacks and ending conditions
"""
import asyncio

import pytest

from conftest import FakeLLM
from voicecaller.core.errors import ProviderUnavailableError
from voicecaller.domain.models.call import CallOutcome
from voicecaller.domain.models.conversation import ConversationStage, MessageRole
from voicecaller.domain.services.conversation_coordinator import ConversationCoordinator
from voicecaller.domain.services.llm_guardrails import LLMGuardrails


class HangingLLM(FakeLLM):
    async def stream_chat(self, messages, system_prompt=None, temperature=None, max_tokens=None, **kwargs):
        await asyncio.sleep(1)
        yield "too late"


class TestContextLifecycle:

    def test_initialize_returns_opening_line(self):
        coordinator = ConversationCoordinator(FakeLLM())

        opening = coordinator.initialize("call-1", "Sam")

        assert opening == "Hi Sam! This is Mike from WebCraft Solutions. How are you doing today?"
        context = coordinator.get_context("call-1")
        assert context.stage == ConversationStage.OPENING
        assert context.turns[0].role == MessageRole.ASSISTANT

    def test_blank_lead_name(self):
        coordinator = ConversationCoordinator(FakeLLM())
        assert coordinator.initialize("call-1", "  ").startswith("Hi there!")

    def test_persona_from_config(self):
        coordinator = ConversationCoordinator(FakeLLM(), persona={"name": "Ana", "company": "Acme Web"})
        assert "This is Ana from Acme Web" in coordinator.initialize("call-1", "Sam")

    def test_cleanup_returns_and_removes_context(self):
        coordinator = ConversationCoordinator(FakeLLM())
        coordinator.initialize("call-1", "Sam")

        context = coordinator.cleanup("call-1")

        assert context.call_id == "call-1"
        assert coordinator.has_context("call-1") is False
        assert coordinator.cleanup("call-1") is None
        assert coordinator.active_count == 0


class TestRespond:

    @pytest.mark.asyncio
    async def test_respond_without_context_drops(self):
        coordinator = ConversationCoordinator(FakeLLM())
        assert await coordinator.respond("ghost", "hello") is None

    @pytest.mark.asyncio
    async def test_llm_reply_advances_stage(self):
        llm = FakeLLM(["Glad to hear it! What kind of business do you run?"])
        coordinator = ConversationCoordinator(llm)
        coordinator.initialize("call-1", "Sam")

        reply = await coordinator.respond("call-1", "I'm doing great")

        assert reply.text == "Glad to hear it! What kind of business do you run?"
        assert reply.stage == ConversationStage.QUALIFICATION
        assert reply.turn_count == 1
        assert reply.used_fallback is False
        assert reply.should_end is False
        assert "Current stage: qualification" in llm.requests[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_history_is_windowed(self):
        llm = FakeLLM()
        coordinator = ConversationCoordinator(llm, history_window=4)
        coordinator.initialize("call-1", "Sam")

        for line in ["hi", "we sell shoes", "maybe", "not sure"]:
            await coordinator.respond("call-1", line)

        assert len(llm.requests[-1]["messages"]) == 4

    @pytest.mark.asyncio
    async def test_llm_error_uses_fallback(self):
        llm = FakeLLM([ProviderUnavailableError("groq down", provider="groq")])
        coordinator = ConversationCoordinator(llm)
        coordinator.initialize("call-1", "Sam")

        reply = await coordinator.respond("call-1", "Who is this?")

        assert reply.used_fallback is True
        assert reply.text in LLMGuardrails.FALLBACK_RESPONSES[ConversationStage.OPENING]
        assert coordinator.get_context("call-1").llm_error_count == 1

    @pytest.mark.asyncio
    async def test_llm_timeout_uses_fallback(self):
        coordinator = ConversationCoordinator(HangingLLM(), llm_timeout=0.01)
        coordinator.initialize("call-1", "Sam")

        reply = await coordinator.respond("call-1", "Who is this?")

        assert reply.used_fallback is True

    @pytest.mark.asyncio
    async def test_persona_break_is_replaced(self):
        coordinator = ConversationCoordinator(FakeLLM(["As an AI language model, I can help."]))
        coordinator.initialize("call-1", "Sam")

        reply = await coordinator.respond("call-1", "Who is this?")

        assert reply.used_fallback is True
        assert "AI" not in reply.text

    @pytest.mark.asyncio
    async def test_repeated_llm_errors_end_call(self):
        error = ProviderUnavailableError("groq down", provider="groq")
        coordinator = ConversationCoordinator(FakeLLM([error, error, error]))
        coordinator.initialize("call-1", "Sam")

        replies = [await coordinator.respond("call-1", "hello there") for _ in range(3)]

        assert [r.should_end for r in replies] == [False, False, True]
        assert replies[-1].text in LLMGuardrails.GRACEFUL_GOODBYE_RESPONSES

    @pytest.mark.asyncio
    async def test_scripted_mode_never_gives_up(self):
        """Without an LLM, fallbacks are the script and do not count as errors"""
        coordinator = ConversationCoordinator(None, max_turns=20)
        coordinator.initialize("call-1", "Sam")

        replies = [await coordinator.respond("call-1", "hmm") for _ in range(5)]

        assert not any(r.should_end for r in replies)
        assert coordinator.get_context("call-1").llm_error_count == 0

    @pytest.mark.asyncio
    async def test_turn_limit_ends_with_closing_line(self):
        coordinator = ConversationCoordinator(FakeLLM(), max_turns=2)
        coordinator.initialize("call-1", "Sam")

        first = await coordinator.respond("call-1", "hello")
        second = await coordinator.respond("call-1", "hello again")

        assert first.should_end is False
        assert second.should_end is True
        assert "Have a great day" in second.text

    @pytest.mark.asyncio
    async def test_objection_then_one_more_turn_ends(self):
        coordinator = ConversationCoordinator(FakeLLM())
        coordinator.initialize("call-1", "Sam")

        first = await coordinator.respond("call-1", "No thanks, I'm not interested")
        second = await coordinator.respond("call-1", "Yeah")

        assert first.stage == ConversationStage.CLOSING
        assert first.should_end is False
        assert second.should_end is True


class TestOutcome:

    @pytest.mark.asyncio
    async def test_outcome_from_conversation(self):
        coordinator = ConversationCoordinator(FakeLLM())
        coordinator.initialize("call-1", "Sam")
        for line in ["doing good", "we need a website, sounds good", "how much is it?"]:
            await coordinator.respond("call-1", line)

        assert coordinator.determine_outcome("call-1") == CallOutcome.QUALIFIED
        assert coordinator.qualification_score("call-1") > 0

    def test_outcome_without_context(self):
        coordinator = ConversationCoordinator(FakeLLM())
        assert coordinator.determine_outcome("ghost") == CallOutcome.NO_ANSWER
        assert coordinator.qualification_score("ghost") is None
