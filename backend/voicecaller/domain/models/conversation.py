"""
Conversation Domain Models
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class MessageRole(str, Enum):
    """Message role in LLM chat history"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """Single message sent to the language model"""
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ConversationStage(str, Enum):
    """Coarse phase of the sales conversation"""
    OPENING = "opening"
    QUALIFICATION = "qualification"
    INTEREST_BUILDING = "interest_building"
    CLOSING = "closing"


class ConversationTurn(BaseModel):
    role: MessageRole
    text: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ConversationContext(BaseModel):
    """
    Per-call dialogue memory.

    Lives only while the call is active; the persisted transcript on the
    Call record is the durable copy.
    """
    call_id: str
    lead_name: str
    stage: ConversationStage = ConversationStage.OPENING
    turns: List[ConversationTurn] = Field(default_factory=list)
    qualification_data: Dict[str, Any] = Field(default_factory=dict)
    turn_count: int = 0
    closing_turns: int = 0
    llm_error_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def add_turn(self, role: MessageRole, text: str) -> None:
        self.turns.append(ConversationTurn(role=role, text=text))

    def recent_turns(self, window: int) -> List[ConversationTurn]:
        return self.turns[-window:] if window > 0 else []


class FinalTranscript(BaseModel):
    """Finalized recognition result handed to the conversation layer"""
    provider_call_id: str
    text: str
    source: str
    confidence: Optional[float] = None
    received_at: datetime = Field(default_factory=datetime.utcnow)


class CoordinatorReply(BaseModel):
    """Agent utterance produced for one customer turn"""
    text: str
    stage: ConversationStage
    turn_count: int
    should_end: bool = False
    used_fallback: bool = False


class TranscriptChunk(BaseModel):
    """Raw transcription result from a recognition backend"""
    text: str
    is_final: bool = False
    confidence: Optional[float] = None
