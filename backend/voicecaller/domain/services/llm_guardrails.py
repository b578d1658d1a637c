"""
LLM Guardrails Service
Timeout handling, fallback replies and response cleanup for the sales agent.

Fallback replies sound like a person pausing, never like a system error.
"""
import re
import logging
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field

from voicecaller.domain.models.conversation import ConversationStage

logger = logging.getLogger(__name__)


class LLMGuardrailsConfig(BaseModel):
    """Configuration for LLM guardrails"""
    max_response_time_seconds: float = Field(default=8.0, ge=0.01, le=30.0, description="Max LLM response time")
    max_llm_errors_before_goodbye: int = Field(default=3, ge=1, le=10, description="Max LLM errors before ending call")
    max_sentences: int = Field(default=3, ge=1, le=5, description="Max sentences per response")


class LLMGuardrails:
    """
    Guardrails around the language model.

    - Stage-appropriate fallback replies, cycled per call
    - Graceful goodbye once errors pile up
    - Sentence truncation for voice brevity
    """

    FALLBACK_RESPONSES: Dict[ConversationStage, List[str]] = {
        ConversationStage.OPENING: [
            "I'm sorry, could you repeat that? I want to make sure I understand.",
            "Sorry, I missed that. How has business been lately?",
        ],
        ConversationStage.QUALIFICATION: [
            "That's interesting. Can you tell me a bit more about that?",
            "I see. What's your main concern about that?",
            "Got it. How has that been working for you so far?",
        ],
        ConversationStage.INTEREST_BUILDING: [
            "That makes sense. What would an ideal setup look like for you?",
            "I hear you. How soon would you want something like that in place?",
        ],
        ConversationStage.CLOSING: [
            "Perfect. Would a quick follow-up call later this week work for you?",
            "Great, I appreciate your time today.",
        ],
    }

    GRACEFUL_GOODBYE_RESPONSES = [
        "I have to jump to another call, but someone from our team will follow up with you. Thanks so much!",
        "Let me have a colleague reach out to you directly. Thank you for your time!",
    ]

    # Phrases that break the human persona
    DISCLOSURE_PATTERNS = [
        r"\bas an ai\b",
        r"\blanguage model\b",
        r"\bi am an ai\b",
        r"\bi'm an ai\b",
    ]

    def __init__(self, config: Optional[LLMGuardrailsConfig] = None):
        self.config = config or LLMGuardrailsConfig()
        self._fallback_index: Dict[str, int] = {}
        self._goodbye_index = 0

    def get_fallback_response(
        self,
        stage: ConversationStage,
        call_id: Optional[str] = None,
        error_count: int = 0
    ) -> Tuple[str, bool]:
        """
        Human-sounding reply for when the LLM fails.

        Returns:
            Tuple of (response_text, should_end_call)
        """
        if error_count >= self.config.max_llm_errors_before_goodbye:
            response = self.GRACEFUL_GOODBYE_RESPONSES[self._goodbye_index % len(self.GRACEFUL_GOODBYE_RESPONSES)]
            self._goodbye_index += 1
            logger.warning(f"Max LLM errors reached ({error_count}), using graceful goodbye")
            return response, True

        fallbacks = self.FALLBACK_RESPONSES.get(stage, self.FALLBACK_RESPONSES[ConversationStage.QUALIFICATION])

        key = f"{call_id}_{stage.value}" if call_id else stage.value
        idx = self._fallback_index.get(key, 0)
        response = fallbacks[idx % len(fallbacks)]
        self._fallback_index[key] = idx + 1

        logger.info(f"Using fallback response for stage={stage.value}: '{response[:50]}...'")
        return response, False

    def truncate_response(self, response: str, max_sentences: Optional[int] = None) -> str:
        """Keep at most max_sentences sentences"""
        if not response:
            return response

        max_sentences = max_sentences or self.config.max_sentences
        sentences = re.split(r'(?<=[.!?])\s+', response.strip())

        if len(sentences) <= max_sentences:
            return response.strip()

        truncated = ' '.join(sentences[:max_sentences])
        if truncated and truncated[-1] not in '.!?':
            truncated += '.'

        logger.debug(f"Truncated response from {len(sentences)} to {max_sentences} sentences")
        return truncated

    def clean_response(self, response: str) -> str:
        """Strip speaker labels, stage directions and stray quotes"""
        if not response:
            return response

        cleaned = response.strip()
        cleaned = re.sub(r'^(Agent|Mike|Assistant)\s*:\s*', '', cleaned, flags=re.IGNORECASE)
        cleaned = re.sub(r'\*[^*]+\*', '', cleaned)
        cleaned = re.sub(r'\([^)]*\)', '', cleaned)
        cleaned = cleaned.strip('"').strip()
        return re.sub(r'\s+', ' ', cleaned).strip()

    def validate_response(self, response: str) -> Tuple[bool, Optional[str]]:
        """
        Returns:
            Tuple of (is_valid, reason_if_invalid)
        """
        if not response or not response.strip():
            return False, "empty_response"

        lowered = response.lower()
        for pattern in self.DISCLOSURE_PATTERNS:
            if re.search(pattern, lowered):
                logger.warning(f"Response breaks persona: '{response[:60]}'")
                return False, "persona_disclosure"

        return True, None

    def reset_call_tracking(self, call_id: str):
        """Reset fallback tracking for a call (call cleanup)"""
        keys_to_remove = [k for k in self._fallback_index.keys() if k.startswith(f"{call_id}_")]
        for key in keys_to_remove:
            del self._fallback_index[key]
