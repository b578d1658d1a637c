"""
Webhook Dispatcher

Parses provider events, resolves them to a call record, checks the
status precondition for the event type and hands off to the
CallOrchestrator. Always acknowledges: a provider that sees errors
retries, and retries of a broken event only make things worse.
"""
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Optional

from voicecaller.domain.interfaces.call_store import CallStore
from voicecaller.domain.models.call import Call, CallStatus, TERMINAL_STATUSES
from voicecaller.domain.models.webhook_event import WebhookEvent
from voicecaller.domain.services.call_orchestrator import CallOrchestrator

logger = logging.getLogger(__name__)

ANY_STATUS: Optional[FrozenSet[CallStatus]] = None
LIVE_STATUSES = frozenset(set(CallStatus) - set(TERMINAL_STATUSES))


class WebhookDispatcher:
    """Routes call-control and speech-stream events to the orchestrator"""

    # event_type -> statuses the call must be in for the event to apply
    PRECONDITIONS: Dict[str, Optional[FrozenSet[CallStatus]]] = {
        "call.initiated": frozenset({CallStatus.INITIATED}),
        "call.answered": frozenset({CallStatus.INITIATED, CallStatus.RINGING}),
        "call.speak.ended": frozenset({CallStatus.IN_PROGRESS}),
        "call.playback.ended": frozenset({CallStatus.IN_PROGRESS}),
        "call.speak.failed": frozenset({CallStatus.IN_PROGRESS}),
        "call.playback.failed": frozenset({CallStatus.IN_PROGRESS}),
        "call.hangup": LIVE_STATUSES,
        "call.recording.saved": ANY_STATUS,
        "call.machine.detection.ended": frozenset({CallStatus.RINGING, CallStatus.ANSWERED}),
        "call.machine.premium.detection.ended": frozenset({CallStatus.RINGING, CallStatus.ANSWERED}),
        "streaming.failed": frozenset({CallStatus.IN_PROGRESS}),
        "call.transcription": frozenset({CallStatus.IN_PROGRESS}),
        "stream.transcription": frozenset({CallStatus.IN_PROGRESS}),
        "stream.error": frozenset({CallStatus.IN_PROGRESS}),
    }

    # Informational events we acknowledge without acting on
    IGNORED_EVENTS = frozenset({
        "call.bridged",
        "call.dtmf.received",
        "call.speak.started",
        "call.playback.started",
        "streaming.started",
        "streaming.stopped",
        "stream.started",
        "stream.stopped",
    })

    def __init__(self, store: CallStore, orchestrator: CallOrchestrator, dedupe_size: int = 1000):
        self._store = store
        self._orchestrator = orchestrator
        self._dedupe_size = dedupe_size
        self._seen: "OrderedDict[str, None]" = OrderedDict()

        self._handlers: Dict[str, Callable[[WebhookEvent, Call], Awaitable[Any]]] = {
            "call.initiated": self._on_initiated,
            "call.answered": self._on_answered,
            "call.speak.ended": self._on_speak_ended,
            "call.playback.ended": self._on_speak_ended,
            "call.speak.failed": self._on_speak_failed,
            "call.playback.failed": self._on_speak_failed,
            "call.hangup": self._on_hangup,
            "call.recording.saved": self._on_recording_saved,
            "call.machine.detection.ended": self._on_machine_detection,
            "call.machine.premium.detection.ended": self._on_machine_detection,
            "streaming.failed": self._on_stream_failed,
            "stream.error": self._on_stream_failed,
            "call.transcription": self._on_transcription,
            "stream.transcription": self._on_transcription,
        }

    async def handle(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process one webhook body.

        Never raises. Returns an acknowledgement dict whose `result`
        field says what happened, for logging and tests.
        """
        try:
            event = WebhookEvent.from_body(body)
        except ValueError as e:
            logger.warning(f"Unparseable webhook: {e}")
            return self._ack("invalid")

        event_type = event.event_type
        logger.info(f"Webhook {event_type} (call_control_id={event.provider_call_id})")

        if self._is_duplicate(event.event_id):
            logger.info(f"Duplicate webhook {event.event_id} ({event_type}), skipping")
            return self._ack("duplicate", event_type)

        if event_type in self.IGNORED_EVENTS:
            return self._ack("ignored", event_type)

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug(f"No handler for webhook {event_type}")
            return self._ack("unhandled", event_type)

        call = await self.resolve_call(event)
        if call is None:
            logger.warning(f"Webhook {event_type} for unknown call {event.provider_call_id}, dropping")
            return self._ack("unknown_call", event_type)

        allowed = self.PRECONDITIONS.get(event_type)
        if allowed is not None and call.status not in allowed:
            logger.info(f"Webhook {event_type} ignored for call {call.id} in status {call.status.value}")
            return self._ack("ignored", event_type, call.id)

        try:
            await handler(event, call)
        except Exception as e:
            logger.error(f"Error handling {event_type} for call {call.id}: {e}", exc_info=True)
            await self._record_error(call.id, f"Webhook {event_type} failed: {e}")
            return self._ack("error", event_type, call.id)

        return self._ack("processed", event_type, call.id)

    async def resolve_call(self, event: WebhookEvent) -> Optional[Call]:
        """
        Find the call by provider id, falling back to the internal id in
        client_state. The fallback backfills the provider id when the
        placement response has not been stored yet.
        """
        provider_call_id = event.provider_call_id
        if provider_call_id:
            call = await self._store.find_by_provider_id(provider_call_id)
            if call is not None:
                return call

        call_id = event.client_state
        if not call_id:
            return None

        call = await self._store.find_by_id(call_id)
        if call is None:
            return None

        if provider_call_id and call.provider_call_id is None:
            call = await self._store.set_provider_id_if_absent(call.id, provider_call_id)
            if call is not None:
                logger.info(f"Backfilled provider id {provider_call_id} for call {call.id}")

        if call is not None and provider_call_id and call.provider_call_id != provider_call_id:
            logger.warning(
                f"Call {call.id} already bound to {call.provider_call_id}, "
                f"event came from {provider_call_id}"
            )
        return call

    # Handlers

    async def _on_initiated(self, event: WebhookEvent, call: Call) -> None:
        await self._orchestrator.on_call_initiated(call)

    async def _on_answered(self, event: WebhookEvent, call: Call) -> None:
        await self._orchestrator.on_call_answered(call)

    async def _on_speak_ended(self, event: WebhookEvent, call: Call) -> None:
        await self._orchestrator.on_speak_ended(call)

    async def _on_speak_failed(self, event: WebhookEvent, call: Call) -> None:
        await self._orchestrator.on_speak_failed(call, event.payload.get("failure_reason"))

    async def _on_hangup(self, event: WebhookEvent, call: Call) -> None:
        await self._orchestrator.on_hangup(call, event.hangup_cause)

    async def _on_recording_saved(self, event: WebhookEvent, call: Call) -> None:
        await self._orchestrator.on_recording_saved(call, event.recording_url)

    async def _on_machine_detection(self, event: WebhookEvent, call: Call) -> None:
        await self._orchestrator.on_machine_detection(call, event.machine_detection_result)

    async def _on_stream_failed(self, event: WebhookEvent, call: Call) -> None:
        reason = event.payload.get("failure_reason") or event.payload.get("reason")
        await self._orchestrator.on_stream_failed(call, reason)

    async def _on_transcription(self, event: WebhookEvent, call: Call) -> None:
        transcript = event.transcript
        if transcript is None:
            return
        delivered = await self._orchestrator.on_native_transcript(
            call,
            transcript["text"],
            transcript["is_final"],
            transcript["confidence"],
        )
        if not delivered:
            logger.debug(f"Native transcript for call {call.id} with no listening session, dropping")

    # Helpers

    def _is_duplicate(self, event_id: Optional[str]) -> bool:
        if not event_id:
            return False
        if event_id in self._seen:
            self._seen.move_to_end(event_id)
            return True

        self._seen[event_id] = None
        while len(self._seen) > self._dedupe_size:
            self._seen.popitem(last=False)
        return False

    async def _record_error(self, call_id: str, note: str) -> None:
        try:
            await self._store.add_note(call_id, note)
        except Exception as e:
            logger.error(f"Could not record webhook error on call {call_id}: {e}")

    @staticmethod
    def _ack(result: str, event_type: Optional[str] = None, call_id: Optional[str] = None) -> Dict[str, Any]:
        return {"status": "ok", "result": result, "event_type": event_type, "call_id": call_id}
