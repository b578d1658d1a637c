"""
Call State Machine

initiated -> ringing -> answered -> in_progress -> {completed | failed}

transition() is pure: it returns a new Call and never touches the store
or any provider. CallStateMachine.apply() wraps it in a read, transition,
conditional-save loop so concurrent writers cannot both win.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel

from voicecaller.domain.interfaces.call_store import CallStore
from voicecaller.domain.models.call import Call, CallOutcome, CallStatus, TERMINAL_STATUSES

logger = logging.getLogger(__name__)


class CallEvent(str, Enum):
    """Inputs to the state machine"""
    RING = "ring"
    ANSWER = "answer"
    START_CONVERSATION = "start_conversation"
    HANGUP = "hangup"
    NO_ANSWER = "no_answer"
    FAIL = "fail"
    TIMEOUT = "timeout"


NON_TERMINAL: FrozenSet[CallStatus] = frozenset(
    {CallStatus.INITIATED, CallStatus.RINGING, CallStatus.ANSWERED, CallStatus.IN_PROGRESS}
)

# event -> (allowed source statuses, target status, default outcome)
TRANSITIONS: Dict[CallEvent, Tuple[FrozenSet[CallStatus], CallStatus, Optional[CallOutcome]]] = {
    CallEvent.RING: (frozenset({CallStatus.INITIATED}), CallStatus.RINGING, None),
    CallEvent.ANSWER: (frozenset({CallStatus.INITIATED, CallStatus.RINGING}), CallStatus.ANSWERED, None),
    CallEvent.START_CONVERSATION: (frozenset({CallStatus.ANSWERED}), CallStatus.IN_PROGRESS, None),
    CallEvent.HANGUP: (NON_TERMINAL, CallStatus.COMPLETED, None),
    CallEvent.NO_ANSWER: (
        frozenset({CallStatus.INITIATED, CallStatus.RINGING, CallStatus.ANSWERED}),
        CallStatus.COMPLETED,
        CallOutcome.NO_ANSWER,
    ),
    CallEvent.FAIL: (NON_TERMINAL, CallStatus.FAILED, CallOutcome.FAILED),
    CallEvent.TIMEOUT: (NON_TERMINAL, CallStatus.COMPLETED, CallOutcome.TIMEOUT),
}


class TransitionResult(BaseModel):
    call: Optional[Call] = None
    changed: bool = False
    previous_status: Optional[CallStatus] = None
    reason: Optional[str] = None


def transition(
    call: Call,
    event: CallEvent,
    now: Optional[datetime] = None,
    outcome: Optional[CallOutcome] = None,
    note: Optional[str] = None,
) -> TransitionResult:
    """
    Apply `event` to `call`.

    Terminal calls and events whose source status does not match are
    no-ops (changed=False) rather than errors; duplicate and out-of-order
    webhooks land here.
    """
    if call.status in TERMINAL_STATUSES:
        return TransitionResult(call=call, previous_status=call.status, reason="terminal")

    allowed, target, default_outcome = TRANSITIONS[event]
    if call.status not in allowed:
        return TransitionResult(call=call, previous_status=call.status, reason=f"not_allowed_from_{call.status.value}")

    now = now or datetime.utcnow()
    updated = call.model_copy(deep=True)
    updated.status = target

    if target == CallStatus.ANSWERED and updated.answered_at is None:
        updated.answered_at = now

    chosen_outcome = outcome or default_outcome
    if chosen_outcome is not None:
        updated.outcome = chosen_outcome

    if target in TERMINAL_STATUSES and updated.end_time is None:
        updated.end_time = now
        updated.duration_seconds = max(0, int((now - updated.start_time).total_seconds()))

    if note:
        updated.add_note(note)

    return TransitionResult(call=updated, changed=True, previous_status=call.status)


class CallStateMachine:
    """
    Single authority for persisted call status.

    Every write is guarded by the status that was read; on a lost race the
    call is re-read and the pure transition re-evaluated, which turns into
    a no-op if the competing writer already ended the call.
    """

    MAX_ATTEMPTS = 3

    ANNOTATABLE_FIELDS = frozenset({
        "outcome",
        "qualification_score",
        "qualification_data",
        "summary",
        "recording_url",
        "last_processed_at",
        "last_analyzed_at",
    })

    def __init__(self, store: CallStore):
        self._store = store

    async def apply(
        self,
        call_id: str,
        event: CallEvent,
        outcome: Optional[CallOutcome] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransitionResult:
        result = TransitionResult(reason="not_found")

        for attempt in range(self.MAX_ATTEMPTS):
            call = await self._store.find_by_id(call_id)
            if call is None:
                logger.warning(f"Transition {event.value} for unknown call {call_id}")
                return TransitionResult(reason="not_found")

            result = transition(call, event, now=now, outcome=outcome, note=note)
            if not result.changed:
                logger.info(f"Call {call_id}: {event.value} ignored ({result.reason})")
                return result

            if await self._store.save(result.call, expected_status=call.status):
                logger.info(
                    f"Call {call_id}: {call.status.value} -> {result.call.status.value} "
                    f"(event={event.value}, outcome={result.call.outcome.value})"
                )
                return result

            logger.info(f"Call {call_id}: concurrent update during {event.value}, retrying ({attempt + 1})")

        return TransitionResult(call=result.call, reason="conflict")

    async def annotate(self, call_id: str, **fields: Any) -> Optional[Call]:
        """
        Post-hoc writes that never change status (outcome, score,
        recording URL, reconciler timestamps). Allowed on terminal calls.
        """
        unknown = set(fields) - self.ANNOTATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot annotate fields: {sorted(unknown)}")

        for _ in range(self.MAX_ATTEMPTS):
            call = await self._store.find_by_id(call_id)
            if call is None:
                return None

            updated = call.model_copy(update=fields, deep=True)
            if await self._store.save(updated, expected_status=call.status):
                return updated

        logger.warning(f"Call {call_id}: annotate gave up after {self.MAX_ATTEMPTS} attempts")
        return None
