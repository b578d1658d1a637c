"""
Background Reconciler

Two periodic sweeps that repair what lost webhooks leave behind:

- progress: calls stuck in a transitional status are checked against the
  provider and moved forward, or force-ended once they exceed the
  maximum call duration
- analysis: ended calls without a recorded analysis get an outcome,
  qualification score and summary derived from their transcript

Both sweeps write through the CallStateMachine, so a sweep racing a
webhook can never move a call backwards.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from voicecaller.core.errors import StaleCallError, VoiceCallerError
from voicecaller.domain.interfaces.call_store import CallStore
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider
from voicecaller.domain.models.call import Call, CallOutcome, CallStatus, ConversationRole, TRANSITIONAL_STATUSES
from voicecaller.domain.services import qualification
from voicecaller.domain.services.call_orchestrator import CallOrchestrator
from voicecaller.domain.services.call_state_machine import CallEvent, CallStateMachine

logger = logging.getLogger(__name__)

ENDED_PROVIDER_STATES = frozenset({"completed", "failed", "not_found", "hangup", "canceled"})


class BackgroundReconciler:
    """
    Periodic repair of call records.

    Responsibilities:
    - Advance calls whose status webhooks were lost
    - Force-end calls that ran past the maximum duration
    - Analyze ended calls that were never analyzed
    """

    def __init__(
        self,
        store: CallStore,
        state_machine: CallStateMachine,
        telephony: TelephonyProvider,
        orchestrator: CallOrchestrator,
        progress_interval: float = 5.0,
        analysis_interval: float = 10.0,
        progress_batch_size: int = 3,
        analysis_batch_size: int = 2,
        stale_after_seconds: int = 30,
        max_call_duration_seconds: int = 600,
    ):
        self._store = store
        self._state_machine = state_machine
        self._telephony = telephony
        self._orchestrator = orchestrator
        self._progress_interval = progress_interval
        self._analysis_interval = analysis_interval
        self._progress_batch_size = progress_batch_size
        self._analysis_batch_size = analysis_batch_size
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._max_duration = timedelta(seconds=max_call_duration_seconds)

        self.running = False
        self._tasks: List[asyncio.Task] = []

        # Stats
        self._progress_sweeps = 0
        self._analysis_sweeps = 0
        self._calls_repaired = 0
        self._calls_analyzed = 0

    # Lifecycle

    def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._tasks = [
            asyncio.create_task(self._loop("progress", self._progress_interval, self.sweep_progress)),
            asyncio.create_task(self._loop("analysis", self._analysis_interval, self.sweep_analysis)),
        ]
        logger.info(
            f"Reconciler started (progress every {self._progress_interval}s, "
            f"analysis every {self._analysis_interval}s)"
        )

    async def stop(self) -> None:
        self.running = False
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Reconciler stopped")

    async def _loop(self, name: str, interval: float, sweep) -> None:
        while self.running:
            try:
                await asyncio.sleep(interval)
                await sweep()
            except asyncio.CancelledError:
                logger.info(f"Reconciler {name} loop received cancellation signal")
                break
            except Exception as e:
                # A failed sweep must not stop the loop; the next one retries
                logger.error(f"Reconciler {name} sweep failed: {e}", exc_info=True)

    def get_stats(self) -> Dict:
        return {
            "running": self.running,
            "progress_sweeps": self._progress_sweeps,
            "analysis_sweeps": self._analysis_sweeps,
            "calls_repaired": self._calls_repaired,
            "calls_analyzed": self._calls_analyzed,
        }

    # Progress sweep

    async def sweep_progress(self, now: Optional[datetime] = None) -> int:
        """Returns the number of calls whose status changed"""
        now = now or datetime.utcnow()
        self._progress_sweeps += 1

        calls = await self._store.find_stale(
            TRANSITIONAL_STATUSES,
            older_than=now - self._stale_after,
            limit=self._progress_batch_size,
        )

        changed = 0
        for call in calls:
            try:
                if await self._reconcile_progress(call, now):
                    changed += 1
            except StaleCallError as e:
                logger.warning(f"Call {call.id} is stale: {e}")
                result = await self._state_machine.apply(call.id, CallEvent.FAIL, note=str(e), now=now)
                if result.changed:
                    changed += 1
            except VoiceCallerError as e:
                logger.warning(f"Reconciler could not check call {call.id}: {e}")
            await self._state_machine.annotate(call.id, last_processed_at=now)

        self._calls_repaired += changed
        if calls:
            logger.info(f"Progress sweep: {len(calls)} checked, {changed} updated")
        return changed

    async def _reconcile_progress(self, call: Call, now: datetime) -> bool:
        """
        Bring one stale call up to date with the provider.

        The maximum duration is measured from answered_at, or start_time
        when the call was never answered.
        """
        if not call.provider_call_id:
            raise StaleCallError("Missing provider call id")

        if call.status in (CallStatus.ANSWERED, CallStatus.IN_PROGRESS):
            started = call.answered_at or call.start_time
            if now - started > self._max_duration:
                logger.warning(f"Call {call.id} exceeded {self._max_duration}, forcing timeout")
                result = await self._orchestrator.force_timeout(call.id)
                return result.changed

        status = await self._telephony.get_call_status(call.provider_call_id)
        state = (status.get("call_state") or "").lower()

        if state in ENDED_PROVIDER_STATES or status.get("is_alive") is False:
            logger.info(f"Call {call.id} ended at provider ({state or 'not alive'}), finalizing")
            result = await self._orchestrator.finalize(call.id, note=f"Reconciled: provider state {state}")
            return result.changed

        if state == "ringing":
            result = await self._state_machine.apply(call.id, CallEvent.RING, now=now)
            return result.changed

        if state in ("active", "answered"):
            result = await self._orchestrator.on_call_answered(call)
            return result.changed

        return False

    # Analysis sweep

    async def sweep_analysis(self) -> int:
        """Returns the number of calls analyzed"""
        self._analysis_sweeps += 1
        calls = await self._store.find_missing_analysis(limit=self._analysis_batch_size)

        for call in calls:
            await self.analyze(call)

        self._calls_analyzed += len(calls)
        return len(calls)

    async def analyze(self, call: Call, now: Optional[datetime] = None) -> Optional[Call]:
        """
        Derive outcome, score and summary from the persisted transcript.

        An outcome already decided while the call was live is kept; only
        an incomplete one is replaced.
        """
        now = now or datetime.utcnow()
        customer_lines = [e.message for e in call.conversation if e.role == ConversationRole.CUSTOMER]
        context = qualification.replay_transcript(call.id, call.lead_name, customer_lines)

        outcome = call.outcome
        if outcome == CallOutcome.INCOMPLETE:
            outcome = qualification.determine_outcome(context)
            if outcome == CallOutcome.NO_ANSWER and len(call.conversation) >= CallOrchestrator.ENGAGED_MIN_ENTRIES:
                outcome = CallOutcome.ENGAGED

        data = {**context.qualification_data, **call.qualification_data}
        fields = {
            "outcome": outcome,
            "qualification_data": data,
            "summary": qualification.summarize(data, outcome, context.turn_count),
            "last_analyzed_at": now,
        }
        if call.qualification_score is None:
            fields["qualification_score"] = qualification.qualification_score(data, context.turn_count)

        updated = await self._state_machine.annotate(call.id, **fields)
        logger.info(f"Analyzed call {call.id}: outcome={outcome.value}")
        return updated
