"""
Conversation Coordinator
Per-call dialogue memory, staging and LLM turn generation.

Contexts live in one owned registry keyed by internal call id. They are
created by initialize() when the call is answered and destroyed by
cleanup() when the call ends.
"""
import asyncio
import logging
from typing import Dict, List, Optional

from voicecaller.domain.interfaces.llm_provider import LLMProvider
from voicecaller.domain.models.call import CallOutcome
from voicecaller.domain.models.conversation import (
    ConversationContext,
    ConversationStage,
    CoordinatorReply,
    Message,
    MessageRole,
)
from voicecaller.domain.services import qualification
from voicecaller.domain.services.llm_guardrails import LLMGuardrails

logger = logging.getLogger(__name__)


DEFAULT_PERSONA = {
    "name": "Mike",
    "company": "WebCraft Solutions",
    "offering": "custom websites and online presence for small businesses",
    "stage_directives": {
        "opening": "Build rapport and ask what kind of business they run.",
        "qualification": "Learn about their business and whether they have a website.",
        "interest_building": "Connect their needs to what we offer and ask about timing.",
        "closing": "Wrap up politely and offer a short follow-up call if they are interested.",
    },
}


class ConversationCoordinator:
    """
    Drives the sales dialogue for every active call.

    respond() never raises for LLM problems; it falls back to a
    pre-written reply so the caller always has something to say.
    """

    def __init__(
        self,
        llm: Optional[LLMProvider],
        guardrails: Optional[LLMGuardrails] = None,
        persona: Optional[Dict] = None,
        max_turns: int = 8,
        history_window: int = 6,
        llm_timeout: float = 8.0,
    ):
        self._llm = llm
        self._guardrails = guardrails or LLMGuardrails()
        self._persona = {**DEFAULT_PERSONA, **(persona or {})}
        self._max_turns = max_turns
        self._history_window = history_window
        self._llm_timeout = llm_timeout
        self._contexts: Dict[str, ConversationContext] = {}

    # Registry

    def initialize(self, call_id: str, lead_name: Optional[str] = None) -> str:
        """Create the context in stage opening and return the opening line"""
        lead = (lead_name or "").strip() or "there"
        context = ConversationContext(call_id=call_id, lead_name=lead)
        opening = self.opening_line(lead)
        context.add_turn(MessageRole.ASSISTANT, opening)
        self._contexts[call_id] = context

        logger.info(f"Conversation initialized for call {call_id} (lead={lead})")
        return opening

    def get_context(self, call_id: str) -> Optional[ConversationContext]:
        return self._contexts.get(call_id)

    def has_context(self, call_id: str) -> bool:
        return call_id in self._contexts

    def cleanup(self, call_id: str) -> Optional[ConversationContext]:
        """Destroy the context; returns it so callers can persist a final outcome"""
        context = self._contexts.pop(call_id, None)
        self._guardrails.reset_call_tracking(call_id)
        if context is not None:
            logger.info(f"Conversation context released for call {call_id}")
        return context

    @property
    def active_count(self) -> int:
        return len(self._contexts)

    # Lines

    def opening_line(self, lead_name: str) -> str:
        return (
            f"Hi {lead_name}! This is {self._persona['name']} from "
            f"{self._persona['company']}. How are you doing today?"
        )

    def closing_line(self, call_id: str) -> str:
        context = self._contexts.get(call_id)
        outcome = self.determine_outcome(call_id) if context else CallOutcome.NO_ANSWER
        if outcome in (CallOutcome.QUALIFIED, CallOutcome.FOLLOW_UP):
            return "Thanks so much for your time! Someone from our team will follow up with the details. Have a great day!"
        return "I appreciate you taking the time to chat. Have a great day!"

    # Turns

    async def respond(self, call_id: str, customer_text: str) -> Optional[CoordinatorReply]:
        """
        Handle one customer utterance.

        Returns None when the call has no context (already cleaned up).
        """
        context = self._contexts.get(call_id)
        if context is None:
            logger.info(f"No conversation context for call {call_id}, dropping transcript")
            return None

        context.add_turn(MessageRole.USER, customer_text)
        context.turn_count += 1

        # Advance stage and signals before generating, so the directive
        # matches where the customer just took the conversation
        previous_stage = context.stage
        context.stage = qualification.next_stage(context.stage, customer_text)
        context.qualification_data.update(qualification.extract_signals(customer_text))

        if context.stage != previous_stage:
            logger.info(f"Call {call_id} stage: {previous_stage.value} -> {context.stage.value}")

        if context.stage == ConversationStage.CLOSING:
            context.closing_turns += 1

        text, used_fallback, give_up = await self._generate(context)

        should_end = give_up
        if not give_up and context.turn_count >= self._max_turns:
            logger.info(f"Call {call_id} reached turn limit ({self._max_turns})")
            should_end = True
            text = self.closing_line(call_id)
        elif not give_up and context.closing_turns >= 2:
            logger.info(f"Call {call_id} closing, wrapping up")
            should_end = True
            text = self.closing_line(call_id)

        context.add_turn(MessageRole.ASSISTANT, text)

        return CoordinatorReply(
            text=text,
            stage=context.stage,
            turn_count=context.turn_count,
            should_end=should_end,
            used_fallback=used_fallback,
        )

    async def _generate(self, context: ConversationContext):
        """Returns (text, used_fallback, should_end)"""
        if self._llm is None:
            # Scripted mode: cycle fallbacks without counting errors
            text, _ = self._guardrails.get_fallback_response(context.stage, call_id=context.call_id)
            return text, True, False

        history = self._history(context)
        try:
            raw = await asyncio.wait_for(
                self._llm.complete(history, system_prompt=self.system_prompt(context)),
                timeout=self._llm_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"LLM timed out after {self._llm_timeout}s for call {context.call_id}")
            return self._fallback(context)
        except (RuntimeError, ValueError) as e:
            logger.warning(f"LLM failed for call {context.call_id}: {e}")
            return self._fallback(context)

        text = self._guardrails.truncate_response(self._guardrails.clean_response(raw))
        is_valid, reason = self._guardrails.validate_response(text)
        if not is_valid:
            logger.warning(f"Discarding LLM reply for call {context.call_id}: {reason}")
            return self._fallback(context)

        return text, False, False

    def _fallback(self, context: ConversationContext):
        context.llm_error_count += 1
        text, should_end = self._guardrails.get_fallback_response(
            context.stage,
            call_id=context.call_id,
            error_count=context.llm_error_count,
        )
        return text, True, should_end

    def _history(self, context: ConversationContext) -> List[Message]:
        return [
            Message(role=turn.role, content=turn.text, timestamp=turn.timestamp)
            for turn in context.recent_turns(self._history_window)
        ]

    def system_prompt(self, context: ConversationContext) -> str:
        persona = self._persona
        directive = persona.get("stage_directives", {}).get(context.stage.value, "")
        known = ", ".join(f"{k}={v}" for k, v in context.qualification_data.items()) or "nothing yet"

        return (
            f"You are {persona['name']}, a friendly sales representative at {persona['company']}, "
            f"which offers {persona['offering']}. You are on a phone call with {context.lead_name}. "
            f"Speak naturally in one to three short sentences, ask at most one question, and never "
            f"mention that you are automated.\n"
            f"Current stage: {context.stage.value}. {directive}\n"
            f"What you know so far: {known}."
        )

    # Outcome

    def determine_outcome(self, call_id: str) -> CallOutcome:
        context = self._contexts.get(call_id)
        if context is None:
            return CallOutcome.NO_ANSWER
        return qualification.determine_outcome(context)

    def qualification_score(self, call_id: str) -> Optional[int]:
        context = self._contexts.get(call_id)
        if context is None:
            return None
        return qualification.qualification_score(context.qualification_data, context.turn_count)
