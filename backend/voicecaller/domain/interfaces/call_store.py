"""
Call Record Store Interface
Durable source of truth for call state
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence
from voicecaller.domain.models.call import Call, CallStatus, ConversationEntry


class CallStore(ABC):
    """Abstract base class for call record persistence"""

    @abstractmethod
    async def create(self, call: Call) -> Call:
        """Persist a new call record"""
        pass

    @abstractmethod
    async def find_by_id(self, call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def find_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def find_stale(
        self,
        statuses: Sequence[CallStatus],
        older_than: datetime,
        limit: int
    ) -> List[Call]:
        """
        Calls in one of `statuses` whose last_processed_at (or start_time
        when never processed) is older than `older_than`, oldest first.
        """
        pass

    @abstractmethod
    async def find_missing_analysis(self, limit: int) -> List[Call]:
        """Terminal calls that have never been analyzed"""
        pass

    @abstractmethod
    async def save(self, call: Call, expected_status: Optional[CallStatus] = None) -> bool:
        """
        Conditionally persist `call`.

        When `expected_status` is given the write only applies if the stored
        status still equals it. The stored version must also equal
        `call.version`; a successful save increments it. Returns False when
        either condition failed.
        """
        pass

    @abstractmethod
    async def set_provider_id_if_absent(self, call_id: str, provider_call_id: str) -> Optional[Call]:
        """
        First-write-wins backfill of the provider call id.

        Returns the stored call after the attempt (whichever id won).
        """
        pass

    @abstractmethod
    async def append_conversation_entry(self, call_id: str, entry: ConversationEntry) -> None:
        pass

    @abstractmethod
    async def add_note(self, call_id: str, note: str) -> None:
        """Record an internal error or remark without touching status"""
        pass
