"""
Call Orchestrator

Runs one call from placement to release. Webhook handlers, recognition
callbacks, silence timers and the reconciler all come through here, and
every persisted status change goes through the CallStateMachine.

Ephemeral per-call state (recognition session, conversation context,
silence timer, deferred actions) is released in exactly one place:
release().
"""
import logging
import uuid
from typing import Optional, Set

from voicecaller.core.errors import ProviderRejectedError, VoiceCallerError
from voicecaller.domain.interfaces.call_store import CallStore
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider
from voicecaller.domain.models.call import (
    Call,
    CallOutcome,
    CallStatus,
    ConversationEntry,
    ConversationRole,
)
from voicecaller.domain.models.conversation import ConversationContext, FinalTranscript
from voicecaller.domain.models.results import OperationResult
from voicecaller.domain.models.webhook_event import encode_client_state
from voicecaller.domain.services import qualification
from voicecaller.domain.services.call_state_machine import CallEvent, CallStateMachine, TransitionResult
from voicecaller.domain.services.conversation_coordinator import ConversationCoordinator
from voicecaller.domain.services.deferred_tasks import DeferredTaskRegistry
from voicecaller.domain.services.silence_watchdog import SilenceWatchdog
from voicecaller.domain.services.speech_recognition import RecognitionSessionManager
from voicecaller.domain.services.speech_synthesis import SpeechSynthesisPipeline
from voicecaller.domain.services.text_shaping import to_plain_text
from voicecaller.utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)

# Answering-machine detection results that end the call
MACHINE_RESULTS = frozenset({"machine", "fax", "machine_start", "machine_end_beep", "machine_end_other"})


class CallOrchestrator:
    """Per-call workflow on top of the state machine and speech subsystems"""

    LISTENING_PROMPT = "I'm listening, please continue."
    ENGAGED_MIN_ENTRIES = 6

    def __init__(
        self,
        store: CallStore,
        state_machine: CallStateMachine,
        telephony: TelephonyProvider,
        recognition: RecognitionSessionManager,
        synthesis: SpeechSynthesisPipeline,
        coordinator: ConversationCoordinator,
        watchdog: SilenceWatchdog,
        deferred: DeferredTaskRegistry,
        webhook_url: Optional[str] = None,
        answer_delay: float = 0.5,
        listen_delay: float = 0.2,
        closing_grace_seconds: float = 10.0,
    ):
        self.store = store
        self.state_machine = state_machine
        self.telephony = telephony
        self.recognition = recognition
        self.synthesis = synthesis
        self.coordinator = coordinator
        self.watchdog = watchdog
        self.deferred = deferred
        self._webhook_url = webhook_url
        self._answer_delay = answer_delay
        self._listen_delay = listen_delay
        self._closing_grace_seconds = closing_grace_seconds

        # Calls whose closing line is playing; hang up when it ends
        self._closing: Set[str] = set()
        # Calls recording without a recognizer; the next silence prompt ends the recording
        self._recording: Set[str] = set()

        self.watchdog.bind(self._on_silence_reprompt, self._on_silence_give_up)

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    async def initiate_call(self, phone_number: str, lead_name: Optional[str] = None) -> Call:
        """
        Create the call record and place the outbound call.

        The record exists before the provider is contacted, so webhooks
        that race the placement response can be matched via client_state.
        """
        call = Call(
            id=str(uuid.uuid4()),
            phone_number=normalize_phone_number(phone_number),
            lead_name=(lead_name or "").strip() or "there",
        )
        await self.store.create(call)
        logger.info(f"Call {call.id} created for {call.phone_number}")

        try:
            provider_call_id = await self.telephony.place_call(
                call.phone_number,
                None,
                webhook_url=self._webhook_url,
                client_state=encode_client_state(call.id),
            )
        except ProviderRejectedError as e:
            logger.error(f"Call {call.id} rejected by {self.telephony.name}: {e}")
            result = await self.state_machine.apply(call.id, CallEvent.FAIL, note=f"Call rejected: {e}")
            return result.call or call
        except VoiceCallerError as e:
            logger.error(f"Call {call.id} could not be placed: {e}")
            result = await self.state_machine.apply(call.id, CallEvent.FAIL, note=f"Telephony unavailable: {e}")
            return result.call or call

        stored = await self.store.set_provider_id_if_absent(call.id, provider_call_id)
        return stored or call

    # ------------------------------------------------------------------
    # Call-control events
    # ------------------------------------------------------------------

    async def on_call_initiated(self, call: Call) -> TransitionResult:
        return await self.state_machine.apply(call.id, CallEvent.RING)

    async def on_call_answered(self, call: Call) -> TransitionResult:
        result = await self.state_machine.apply(call.id, CallEvent.ANSWER)
        if result.changed:
            self.deferred.schedule(
                call.id,
                self._answer_delay,
                lambda: self._begin_conversation(call.id),
                name="opening",
            )
        return result

    async def _begin_conversation(self, call_id: str) -> None:
        call = await self.store.find_by_id(call_id)
        if call is None or call.status != CallStatus.ANSWERED:
            logger.info(f"Call {call_id} no longer answered, skipping opening line")
            return

        opening = self.coordinator.initialize(call.id, call.lead_name)

        result = await self.state_machine.apply(call.id, CallEvent.START_CONVERSATION)
        if not result.changed:
            # Ended between the read and the write
            self.coordinator.cleanup(call.id)
            return

        await self.say(result.call, opening)

    async def on_speak_ended(self, call: Call) -> None:
        """Agent finished talking: hang up after a closing line, otherwise listen"""
        if call.id in self._closing:
            await self.hangup_call(call.id)
            return

        if call.status != CallStatus.IN_PROGRESS:
            logger.info(f"Call {call.id}: speak ended while {call.status.value}, ignoring")
            return

        if not self.coordinator.has_context(call.id):
            logger.info(f"Call {call.id}: speak ended after context was released, dropping")
            return

        self.deferred.schedule(call.id, self._listen_delay, lambda: self._listen(call.id), name="listen")

    async def on_speak_failed(self, call: Call, reason: Optional[str] = None) -> None:
        await self.store.add_note(call.id, f"Playback failed: {reason or 'unknown'}")
        await self.on_speak_ended(call)

    async def on_hangup(self, call: Call, cause: Optional[str] = None) -> TransitionResult:
        """Provider reports the call is over"""
        if call.status in (CallStatus.INITIATED, CallStatus.RINGING):
            return await self.finalize(
                call.id,
                event=CallEvent.NO_ANSWER,
                note=f"Hangup before answer ({cause})" if cause else None,
            )
        return await self.finalize(call.id, note=f"Hangup cause: {cause}" if cause else None)

    async def on_machine_detection(self, call: Call, result: Optional[str]) -> None:
        if (result or "").lower() not in MACHINE_RESULTS:
            logger.info(f"Call {call.id}: machine detection result '{result}', continuing")
            return

        logger.info(f"Call {call.id}: answering machine detected ({result}), hanging up")
        await self._request_hangup(call)
        await self.finalize(call.id, event=CallEvent.NO_ANSWER, note=f"Answering machine detected ({result})")

    async def on_recording_saved(self, call: Call, recording_url: Optional[str]) -> None:
        if not recording_url:
            return
        await self.state_machine.annotate(call.id, recording_url=recording_url)
        logger.info(f"Call {call.id}: recording saved")

    async def on_stream_failed(self, call: Call, reason: Optional[str] = None) -> None:
        if call.provider_call_id:
            await self._on_recognition_error(
                call.provider_call_id,
                VoiceCallerError(f"audio stream failed: {reason or 'unknown'}", provider=self.telephony.name),
            )

    async def on_native_transcript(
        self,
        call: Call,
        text: str,
        is_final: bool,
        confidence: Optional[float] = None
    ) -> bool:
        if not call.provider_call_id:
            return False
        return await self.recognition.feed_native_transcript(call.provider_call_id, text, is_final, confidence)

    # ------------------------------------------------------------------
    # Speaking
    # ------------------------------------------------------------------

    async def say(self, call: Call, text: str) -> OperationResult:
        """
        Speak on the call and record the line in the transcript.

        When neither voice can play, the call is failed: a caller that
        cannot hear us cannot continue.
        """
        if not call.provider_call_id:
            return OperationResult.failed("call has no provider id")

        if await self._live_call(call.id) is None:
            logger.info(f"Call {call.id} is no longer in progress, not speaking")
            return OperationResult.failed("call is no longer in progress")

        result = await self.synthesis.speak(call.provider_call_id, text)
        if not result.success:
            logger.error(f"Call {call.id}: could not speak ({result.error})")
            await self.fail_call(call.id, f"Speech synthesis failed: {result.error}")
            return result

        # Terminal calls are never written to
        if await self._live_call(call.id) is None:
            logger.info(f"Call {call.id} ended while speaking, line not recorded")
            return OperationResult.failed("call ended while speaking", provider=result.provider)

        await self.store.append_conversation_entry(
            call.id,
            ConversationEntry(role=ConversationRole.AGENT, message=to_plain_text(result.shaped_text or text)),
        )
        if result.used_fallback and result.note:
            await self.store.add_note(call.id, result.note)
        return result

    async def end_call(self, call: Call, closing_text: Optional[str] = None) -> None:
        """Speak one closing line, then hang up when it finishes"""
        if await self._live_call(call.id) is None:
            return

        closing_text = closing_text or self.coordinator.closing_line(call.id)
        self._closing.add(call.id)

        result = await self.say(call, closing_text)
        if not result.success or await self._live_call(call.id) is None:
            # release() may already have run while we were speaking
            self._closing.discard(call.id)
            return

        # If the playback-ended event never arrives, hang up anyway
        self.deferred.schedule(
            call.id,
            self._closing_grace_seconds,
            lambda: self.hangup_call(call.id),
            name="closing-hangup",
        )

    # ------------------------------------------------------------------
    # Listening
    # ------------------------------------------------------------------

    async def _listen(self, call_id: str) -> None:
        call = await self.store.find_by_id(call_id)
        if call is None or call.status != CallStatus.IN_PROGRESS or not call.provider_call_id:
            return

        if self.recognition.is_active(call.provider_call_id):
            self.watchdog.arm(call.id)
            return

        result = await self.recognition.start(
            call.provider_call_id, self._on_transcript, self._on_recognition_error
        )
        if not result.success:
            logger.warning(f"Call {call.id}: primary recognition unavailable ({result.error})")
            result = await self.recognition.start_fallback(
                call.provider_call_id, self._on_transcript, self._on_recognition_error
            )

        if not result.success:
            await self._recording_fallback(call)
            return

        if result.used_fallback:
            await self.store.add_note(call.id, f"Recognition fallback: {result.provider}")
        self.watchdog.arm(call.id)

    async def _recording_fallback(self, call: Call) -> None:
        """
        Neither recognizer works: record until the silence timer expires.

        The watchdog expiry is the only re-prompt for the window and
        counts toward giving up.
        """
        logger.warning(f"Call {call.id}: no recognizer available, recording instead")
        await self.store.add_note(call.id, "Speech recognition unavailable; recording without transcription")

        try:
            await self.telephony.start_recording(call.provider_call_id)
        except VoiceCallerError as e:
            logger.warning(f"Call {call.id}: could not start recording: {e}")

        self._recording.add(call.id)
        self.watchdog.arm(call.id)

    async def _stop_recording(self, call: Call) -> bool:
        if call.id not in self._recording:
            return False
        self._recording.discard(call.id)
        try:
            await self.telephony.stop_recording(call.provider_call_id)
        except VoiceCallerError as e:
            logger.warning(f"Call {call.id}: could not stop recording: {e}")
        return True

    async def _on_transcript(self, transcript: FinalTranscript) -> None:
        call = await self.store.find_by_provider_id(transcript.provider_call_id)
        if call is None or call.status != CallStatus.IN_PROGRESS:
            logger.info(f"Transcript for inactive call {transcript.provider_call_id}, dropping")
            return

        logger.info(f"Call {call.id} customer: '{transcript.text}' ({transcript.source})")

        # Stop listening before acting so our own voice is not transcribed
        self.watchdog.reset(call.id)
        await self.recognition.stop(call.provider_call_id)

        await self.store.append_conversation_entry(
            call.id,
            ConversationEntry(role=ConversationRole.CUSTOMER, message=transcript.text),
        )

        reply = await self.coordinator.respond(call.id, transcript.text)
        if reply is None:
            return

        # The call may have ended while the reply was generated
        call = await self._live_call(call.id)
        if call is None or not self.coordinator.has_context(call.id):
            logger.info(f"Call for {transcript.provider_call_id} ended during reply, dropping it")
            return

        logger.info(f"Call {call.id} agent ({reply.stage.value}, turn {reply.turn_count}): '{reply.text}'")
        if reply.should_end:
            await self.end_call(call, reply.text)
        else:
            await self.say(call, reply.text)

    async def _on_recognition_error(self, provider_call_id: str, error: Exception) -> None:
        call = await self.store.find_by_provider_id(provider_call_id)
        if call is None or call.status != CallStatus.IN_PROGRESS:
            await self.recognition.stop(provider_call_id)
            return

        stopped = await self.recognition.stop(provider_call_id)
        await self.store.add_note(call.id, f"Recognition error ({stopped.provider}): {error}")

        if stopped.provider == self.recognition.fallback_name:
            await self._recording_fallback(call)
            return

        result = await self.recognition.start_fallback(
            provider_call_id, self._on_transcript, self._on_recognition_error
        )
        if result.success:
            self.watchdog.arm(call.id)
        else:
            await self._recording_fallback(call)

    # ------------------------------------------------------------------
    # Silence
    # ------------------------------------------------------------------

    async def _on_silence_reprompt(self, call_id: str, silence_count: int) -> None:
        call = await self.store.find_by_id(call_id)
        if call is None or call.status != CallStatus.IN_PROGRESS:
            return

        if await self._stop_recording(call):
            await self.say(call, self.LISTENING_PROMPT)
            return

        if call.provider_call_id:
            await self.recognition.stop(call.provider_call_id)
        await self.say(call, self.watchdog.reprompt_text(silence_count))

    async def _on_silence_give_up(self, call_id: str, silence_count: int) -> None:
        call = await self.store.find_by_id(call_id)
        if call is None or call.is_terminal:
            return
        await self.hangup_call(
            call.id,
            outcome=CallOutcome.NO_ANSWER,
            note=f"No response after {silence_count} prompts",
        )

    # ------------------------------------------------------------------
    # Ending
    # ------------------------------------------------------------------

    async def hangup_call(
        self,
        call_id: str,
        outcome: Optional[CallOutcome] = None,
        note: Optional[str] = None
    ) -> TransitionResult:
        """
        Actively end the call: request the hangup at the provider, then
        persist the terminal status. The provider's own call.hangup event
        that follows is a no-op.
        """
        call = await self.store.find_by_id(call_id)
        if call is None:
            return TransitionResult(reason="not_found")
        if call.is_terminal:
            return TransitionResult(call=call, previous_status=call.status, reason="terminal")

        await self._request_hangup(call)
        return await self.finalize(call.id, outcome=outcome, note=note)

    async def fail_call(self, call_id: str, reason: str) -> TransitionResult:
        call = await self.store.find_by_id(call_id)
        if call is None or call.is_terminal:
            return TransitionResult(call=call, reason="terminal" if call else "not_found")

        await self._request_hangup(call)
        await self.release(call)
        return await self.state_machine.apply(call.id, CallEvent.FAIL, note=reason)

    async def force_timeout(self, call_id: str) -> TransitionResult:
        """Reconciler path for calls that exceeded the maximum duration"""
        call = await self.store.find_by_id(call_id)
        if call is None or call.is_terminal:
            return TransitionResult(call=call, reason="terminal" if call else "not_found")

        await self._request_hangup(call)
        await self.release(call)
        return await self.state_machine.apply(call.id, CallEvent.TIMEOUT, note="Exceeded maximum call duration")

    async def finalize(
        self,
        call_id: str,
        event: CallEvent = CallEvent.HANGUP,
        outcome: Optional[CallOutcome] = None,
        note: Optional[str] = None
    ) -> TransitionResult:
        """
        Release ephemeral state and persist the terminal status with the
        conversation's outcome and qualification.
        """
        call = await self.store.find_by_id(call_id)
        if call is None:
            return TransitionResult(reason="not_found")

        context = await self.release(call)

        if outcome is None and event == CallEvent.HANGUP:
            outcome = self._final_outcome(call, context)

        result = await self.state_machine.apply(call.id, event, outcome=outcome, note=note)

        if result.changed and context is not None:
            await self.state_machine.annotate(
                call.id,
                qualification_data=dict(context.qualification_data),
                qualification_score=qualification.qualification_score(
                    context.qualification_data, context.turn_count
                ),
            )
        return result

    def _final_outcome(self, call: Call, context: Optional[ConversationContext]) -> Optional[CallOutcome]:
        if call.outcome != CallOutcome.INCOMPLETE:
            return None

        if context is not None:
            outcome = qualification.determine_outcome(context)
        else:
            outcome = CallOutcome.NO_ANSWER if not call.conversation else CallOutcome.INCOMPLETE

        if outcome == CallOutcome.NO_ANSWER and len(call.conversation) >= self.ENGAGED_MIN_ENTRIES:
            return CallOutcome.ENGAGED
        return outcome

    async def release(self, call: Call) -> Optional[ConversationContext]:
        """
        Drop every piece of ephemeral state held for the call.

        Safe to call repeatedly; returns the conversation context if one
        was still alive.
        """
        self.deferred.cancel_all(call.id)
        self.watchdog.release(call.id)
        self._closing.discard(call.id)
        self._recording.discard(call.id)

        if call.provider_call_id:
            await self.recognition.stop(call.provider_call_id)

        return self.coordinator.cleanup(call.id)

    async def _live_call(self, call_id: str) -> Optional[Call]:
        """Current record if the call is still in conversation"""
        call = await self.store.find_by_id(call_id)
        if call is None or call.status != CallStatus.IN_PROGRESS:
            return None
        return call

    async def _request_hangup(self, call: Call) -> None:
        if not call.provider_call_id:
            return
        try:
            await self.telephony.hangup(call.provider_call_id)
        except VoiceCallerError as e:
            # The call may already be gone at the provider
            logger.warning(f"Call {call.id}: hangup request failed: {e}")

    async def shutdown(self) -> None:
        await self.deferred.shutdown()
        await self.watchdog.shutdown()
        await self.recognition.shutdown()
