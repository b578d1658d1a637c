"""
Supabase Call Record Store

Tables:
- calls: one row per Call (conversation and notes excluded)
- conversation_entries: call_id, role, message, timestamp, audio_url
- call_notes: call_id, note, created_at

The supabase client is synchronous; queries run in a worker thread so
webhook handlers never block the event loop.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from supabase import Client, create_client

from voicecaller.domain.interfaces.call_store import CallStore
from voicecaller.domain.models.call import Call, CallStatus, ConversationEntry, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

CALL_COLUMNS_EXCLUDED = {"conversation", "notes"}


class SupabaseCallStore(CallStore):

    def __init__(self, client: Client):
        self._client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> "SupabaseCallStore":
        return cls(create_client(url, key))

    async def _execute(self, query) -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(query.execute)
        return response.data or []

    def _row(self, call: Call) -> Dict[str, Any]:
        return call.model_dump(mode="json", exclude=CALL_COLUMNS_EXCLUDED)

    async def _hydrate(self, row: Dict[str, Any]) -> Call:
        entries = await self._execute(
            self._client.table("conversation_entries")
            .select("role, message, timestamp, audio_url")
            .eq("call_id", row["id"])
            .order("timestamp")
        )
        notes = await self._execute(
            self._client.table("call_notes")
            .select("note")
            .eq("call_id", row["id"])
            .order("created_at")
        )
        return Call(
            **row,
            conversation=[ConversationEntry(**e) for e in entries],
            notes=[n["note"] for n in notes],
        )

    async def create(self, call: Call) -> Call:
        await self._execute(self._client.table("calls").insert(self._row(call)))
        for note in call.notes:
            await self.add_note(call.id, note)
        call.take_new_notes()
        return call

    async def find_by_id(self, call_id: str) -> Optional[Call]:
        rows = await self._execute(self._client.table("calls").select("*").eq("id", call_id).limit(1))
        return await self._hydrate(rows[0]) if rows else None

    async def find_by_provider_id(self, provider_call_id: str) -> Optional[Call]:
        rows = await self._execute(
            self._client.table("calls").select("*").eq("provider_call_id", provider_call_id).limit(1)
        )
        return await self._hydrate(rows[0]) if rows else None

    async def find_stale(
        self,
        statuses: Sequence[CallStatus],
        older_than: datetime,
        limit: int
    ) -> List[Call]:
        cutoff = older_than.isoformat()
        rows = await self._execute(
            self._client.table("calls")
            .select("*")
            .in_("status", [s.value for s in statuses])
            .or_(f"last_processed_at.lt.{cutoff},and(last_processed_at.is.null,start_time.lt.{cutoff})")
            .order("start_time")
            .limit(limit)
        )
        return [await self._hydrate(r) for r in rows]

    async def find_missing_analysis(self, limit: int) -> List[Call]:
        rows = await self._execute(
            self._client.table("calls")
            .select("*")
            .in_("status", [s.value for s in TERMINAL_STATUSES])
            .is_("last_analyzed_at", "null")
            .order("end_time")
            .limit(limit)
        )
        return [await self._hydrate(r) for r in rows]

    async def save(self, call: Call, expected_status: Optional[CallStatus] = None) -> bool:
        row = self._row(call)
        row.pop("id")
        row.pop("provider_call_id")
        row["version"] = call.version + 1
        row["updated_at"] = datetime.utcnow().isoformat()

        query = self._client.table("calls").update(row).eq("id", call.id).eq("version", call.version)
        if expected_status is not None:
            query = query.eq("status", expected_status.value)

        updated = await self._execute(query)
        if not updated:
            return False

        for note in call.take_new_notes():
            await self.add_note(call.id, note)
        return True

    async def set_provider_id_if_absent(self, call_id: str, provider_call_id: str) -> Optional[Call]:
        await self._execute(
            self._client.table("calls")
            .update({"provider_call_id": provider_call_id})
            .eq("id", call_id)
            .is_("provider_call_id", "null")
        )
        return await self.find_by_id(call_id)

    async def append_conversation_entry(self, call_id: str, entry: ConversationEntry) -> None:
        await self._execute(
            self._client.table("conversation_entries").insert({
                "call_id": call_id,
                **entry.model_dump(mode="json"),
            })
        )

    async def add_note(self, call_id: str, note: str) -> None:
        await self._execute(
            self._client.table("call_notes").insert({
                "call_id": call_id,
                "note": note,
                "created_at": datetime.utcnow().isoformat(),
            })
        )
