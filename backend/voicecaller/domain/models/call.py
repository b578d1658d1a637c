"""
Call Domain Models
"""
from pydantic import BaseModel, Field, PrivateAttr
from typing import Optional, List, Dict, Any
from datetime import datetime
from enum import Enum


class CallStatus(str, Enum):
    """Call status"""
    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no_answer"
    BUSY = "busy"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    CallStatus.COMPLETED,
    CallStatus.FAILED,
    CallStatus.NO_ANSWER,
    CallStatus.BUSY,
})

# Statuses the reconciler watches for lost webhooks
TRANSITIONAL_STATUSES = (
    CallStatus.INITIATED,
    CallStatus.RINGING,
    CallStatus.ANSWERED,
    CallStatus.IN_PROGRESS,
)


class CallOutcome(str, Enum):
    """Business outcome recorded on the call"""
    QUALIFIED = "qualified"
    FOLLOW_UP = "follow_up"
    NOT_INTERESTED = "not_interested"
    NO_ANSWER = "no_answer"
    INCOMPLETE = "incomplete"
    ENGAGED = "engaged"
    TIMEOUT = "timeout"
    FAILED = "failed"


class ConversationRole(str, Enum):
    AGENT = "agent"
    CUSTOMER = "customer"


class ConversationEntry(BaseModel):
    """One line of the persisted call transcript"""
    role: ConversationRole
    message: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    audio_url: Optional[str] = None


class Call(BaseModel):
    """Call record"""
    id: str
    provider_call_id: Optional[str] = None
    phone_number: str
    lead_name: str = "there"
    status: CallStatus = CallStatus.INITIATED
    outcome: CallOutcome = CallOutcome.INCOMPLETE
    start_time: datetime = Field(default_factory=datetime.utcnow)
    answered_at: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    qualification_score: Optional[int] = Field(default=None, ge=0, le=100)
    qualification_data: Dict[str, Any] = Field(default_factory=dict)
    summary: Optional[str] = None
    notes: List[str] = Field(default_factory=list)
    recording_url: Optional[str] = None
    conversation: List[ConversationEntry] = Field(default_factory=list)
    last_processed_at: Optional[datetime] = None
    last_analyzed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    version: int = 0

    # Notes added through add_note() since the record was read
    _new_notes: List[str] = PrivateAttr(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def add_note(self, note: str) -> None:
        self.notes.append(note)
        self._new_notes.append(note)

    def take_new_notes(self) -> List[str]:
        """Notes added since the record was read; stores persist exactly these on save"""
        notes, self._new_notes = self._new_notes, []
        return notes
