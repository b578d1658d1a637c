"""
In-memory Call Record Store
Default backend for single-process deployments and tests
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from voicecaller.domain.interfaces.call_store import CallStore
from voicecaller.domain.models.call import Call, CallStatus, ConversationEntry

logger = logging.getLogger(__name__)


class InMemoryCallStore(CallStore):
    """
    Dict-backed store.

    Reads return deep copies so a caller holding a stale Call cannot
    mutate stored state except through save().
    """

    def __init__(self):
        self._calls: Dict[str, Call] = {}
        self._by_provider_id: Dict[str, str] = {}

    async def create(self, call: Call) -> Call:
        if call.id in self._calls:
            raise ValueError(f"Call {call.id} already exists")
        stored = call.model_copy(deep=True)
        stored.take_new_notes()
        self._calls[call.id] = stored
        if call.provider_call_id:
            self._by_provider_id[call.provider_call_id] = call.id
        return call.model_copy(deep=True)

    async def find_by_id(self, call_id: str) -> Optional[Call]:
        call = self._calls.get(call_id)
        return call.model_copy(deep=True) if call else None

    async def find_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        call_id = self._by_provider_id.get(provider_call_id)
        return await self.find_by_id(call_id) if call_id else None

    async def find_stale(
        self,
        statuses: Sequence[CallStatus],
        older_than: datetime,
        limit: int
    ) -> List[Call]:
        matches = [
            c for c in self._calls.values()
            if c.status in statuses and (c.last_processed_at or c.start_time) < older_than
        ]
        matches.sort(key=lambda c: c.last_processed_at or c.start_time)
        return [c.model_copy(deep=True) for c in matches[:limit]]

    async def find_missing_analysis(self, limit: int) -> List[Call]:
        matches = [
            c for c in self._calls.values()
            if c.is_terminal and c.last_analyzed_at is None
        ]
        matches.sort(key=lambda c: c.end_time or c.start_time)
        return [c.model_copy(deep=True) for c in matches[:limit]]

    async def save(self, call: Call, expected_status: Optional[CallStatus] = None) -> bool:
        stored = self._calls.get(call.id)
        if stored is None:
            logger.warning(f"save() for unknown call {call.id}")
            return False

        if expected_status is not None and stored.status != expected_status:
            return False
        if stored.version != call.version:
            return False

        new_notes = call.take_new_notes()
        updated = call.model_copy(deep=True)
        # Fields with their own write paths are never overwritten by save()
        updated.provider_call_id = stored.provider_call_id or call.provider_call_id
        updated.conversation = stored.conversation
        updated.notes = stored.notes + new_notes
        updated.version = stored.version + 1
        updated.updated_at = datetime.utcnow()
        self._calls[call.id] = updated
        return True

    async def set_provider_id_if_absent(self, call_id: str, provider_call_id: str) -> Optional[Call]:
        stored = self._calls.get(call_id)
        if stored is None:
            return None

        if stored.provider_call_id is None:
            stored.provider_call_id = provider_call_id
            self._by_provider_id[provider_call_id] = call_id
        return stored.model_copy(deep=True)

    async def append_conversation_entry(self, call_id: str, entry: ConversationEntry) -> None:
        stored = self._calls.get(call_id)
        if stored is None:
            logger.warning(f"Dropping transcript entry for unknown call {call_id}")
            return
        stored.conversation.append(entry.model_copy())

    async def add_note(self, call_id: str, note: str) -> None:
        stored = self._calls.get(call_id)
        if stored is not None:
            stored.notes.append(note)

    def __len__(self) -> int:
        return len(self._calls)
