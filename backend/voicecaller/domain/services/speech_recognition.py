"""
Speech Recognition Session Manager

Owns at most one recognition session per provider call id. Backends push
raw TranscriptChunks (or an Exception) onto a per-session queue; a single
consumer task turns finalized, long-enough chunks into FinalTranscript
messages for on_transcript and reports errors through on_error.
"""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Set

from voicecaller.core.errors import VoiceCallerError
from voicecaller.domain.interfaces.stt_provider import RecognitionStream, STTProvider
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider
from voicecaller.domain.models.conversation import FinalTranscript, TranscriptChunk
from voicecaller.domain.models.results import OperationResult

logger = logging.getLogger(__name__)

TranscriptHandler = Callable[[FinalTranscript], Awaitable[None]]
ErrorHandler = Callable[[str, Exception], Awaitable[None]]


class RecognitionSession:
    """Registry entry for one call's open recognizer"""

    def __init__(self, provider_call_id: str, provider: STTProvider, stream: RecognitionStream, queue: asyncio.Queue):
        self.provider_call_id = provider_call_id
        self.provider = provider
        self.stream = stream
        self.queue = queue
        self.started_at = datetime.utcnow()
        self.consumer: Optional[asyncio.Task] = None
        self.closed = False

    @property
    def backend(self) -> str:
        return self.provider.name


class RecognitionSessionManager:

    def __init__(
        self,
        telephony: TelephonyProvider,
        primary: Optional[STTProvider],
        fallback: Optional[STTProvider],
        audio_stream_url: Optional[str] = None,
        min_transcript_length: int = 3,
    ):
        self._telephony = telephony
        self._primary = primary
        self._fallback = fallback
        self._audio_stream_url = audio_stream_url
        self._min_length = min_transcript_length
        self._sessions: Dict[str, RecognitionSession] = {}
        self._starting: Set[str] = set()

    def is_active(self, provider_call_id: str) -> bool:
        return provider_call_id in self._sessions or provider_call_id in self._starting

    def get_session(self, provider_call_id: str) -> Optional[RecognitionSession]:
        return self._sessions.get(provider_call_id)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    @property
    def primary_name(self) -> Optional[str]:
        return self._primary.name if self._primary else None

    @property
    def fallback_name(self) -> Optional[str]:
        return self._fallback.name if self._fallback else None

    async def start(
        self,
        provider_call_id: str,
        on_transcript: TranscriptHandler,
        on_error: ErrorHandler
    ) -> OperationResult:
        """Open a session with the primary recognizer"""
        return await self._open(provider_call_id, self._primary, on_transcript, on_error, used_fallback=False)

    async def start_fallback(
        self,
        provider_call_id: str,
        on_transcript: TranscriptHandler,
        on_error: ErrorHandler
    ) -> OperationResult:
        """Open a session with the telephony provider's native transcription"""
        return await self._open(provider_call_id, self._fallback, on_transcript, on_error, used_fallback=True)

    async def _open(
        self,
        provider_call_id: str,
        provider: Optional[STTProvider],
        on_transcript: TranscriptHandler,
        on_error: ErrorHandler,
        used_fallback: bool
    ) -> OperationResult:
        if self.is_active(provider_call_id):
            logger.warning(f"Recognition already active for {provider_call_id}; stop it first")
            return OperationResult.failed("session_already_active", used_fallback=used_fallback)

        if provider is None:
            kind = "fallback" if used_fallback else "primary"
            return OperationResult.failed(f"{kind} recognizer not configured", used_fallback=used_fallback)

        self._starting.add(provider_call_id)
        try:
            queue: asyncio.Queue = asyncio.Queue()
            try:
                stream = await provider.open_stream(provider_call_id, queue)
            except VoiceCallerError as e:
                logger.warning(f"{provider.name} unavailable for {provider_call_id}: {e}")
                return OperationResult.failed(str(e), provider=provider.name, used_fallback=used_fallback)

            if provider.forwards_audio:
                try:
                    await self._telephony.start_streaming(provider_call_id, stream_url=self._audio_stream_url)
                except VoiceCallerError as e:
                    logger.warning(f"Could not start audio streaming for {provider_call_id}: {e}")
                    await self._close_quietly(provider_call_id, stream)
                    return OperationResult.failed(str(e), provider=provider.name, used_fallback=used_fallback)

            session = RecognitionSession(provider_call_id, provider, stream, queue)
            session.consumer = asyncio.create_task(
                self._consume(session, on_transcript, on_error),
                name=f"recognition-{provider_call_id}",
            )
            self._sessions[provider_call_id] = session
        finally:
            self._starting.discard(provider_call_id)

        logger.info(f"Recognition started for {provider_call_id} via {provider.name}")
        note = "native transcription fallback" if used_fallback else None
        return OperationResult.ok(provider.name, used_fallback=used_fallback, note=note)

    async def _consume(self, session: RecognitionSession, on_transcript: TranscriptHandler, on_error: ErrorHandler):
        """Single consumer: the only place backend output reaches the conversation layer"""
        while not session.closed:
            item = await session.queue.get()

            if isinstance(item, Exception):
                logger.warning(f"Recognizer {session.backend} error for {session.provider_call_id}: {item}")
                try:
                    await on_error(session.provider_call_id, item)
                except Exception as e:
                    logger.error(f"Recognition error handler failed for {session.provider_call_id}: {e}", exc_info=True)
                return

            if not isinstance(item, TranscriptChunk) or not item.is_final:
                continue

            text = item.text.strip()
            if len(text) < self._min_length:
                logger.debug(f"Discarding short transcript for {session.provider_call_id}: '{text}'")
                continue

            transcript = FinalTranscript(
                provider_call_id=session.provider_call_id,
                text=text,
                source=session.backend,
                confidence=item.confidence,
            )
            try:
                await on_transcript(transcript)
            except Exception as e:
                logger.error(f"Transcript handler failed for {session.provider_call_id}: {e}", exc_info=True)

    async def stop(self, provider_call_id: str) -> OperationResult:
        """Idempotent: stopping a call with no session is a no-op"""
        session = self._sessions.pop(provider_call_id, None)
        if session is None:
            return OperationResult.ok("none", note="no active session")

        session.closed = True
        await self._close_quietly(provider_call_id, session.stream)

        if session.provider.forwards_audio:
            try:
                await self._telephony.stop_streaming(provider_call_id)
            except VoiceCallerError as e:
                logger.warning(f"streaming_stop failed for {provider_call_id}: {e}")

        # The consumer may be the task calling stop() (from a handler);
        # it exits on its own once `closed` is set
        consumer = session.consumer
        if consumer is not None and consumer is not asyncio.current_task() and not consumer.done():
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass

        logger.info(f"Recognition stopped for {provider_call_id} ({session.backend})")
        return OperationResult.ok(session.backend)

    async def _close_quietly(self, provider_call_id: str, stream: RecognitionStream) -> None:
        try:
            await stream.close()
        except (VoiceCallerError, OSError) as e:
            logger.warning(f"Error closing recognizer for {provider_call_id}: {e}")

    async def feed_audio(self, provider_call_id: str, audio: bytes) -> bool:
        """Relay call audio into the active session; False when nothing is listening"""
        session = self._sessions.get(provider_call_id)
        if session is None or session.closed or not session.provider.forwards_audio:
            return False
        await session.stream.send_audio(audio)
        return True

    async def feed_native_transcript(
        self,
        provider_call_id: str,
        text: str,
        is_final: bool,
        confidence: Optional[float] = None
    ) -> bool:
        """Deliver a provider-native transcription webhook into its session"""
        session = self._sessions.get(provider_call_id)
        if session is None or session.closed or session.provider.forwards_audio:
            return False
        await session.queue.put(TranscriptChunk(text=text or "", is_final=is_final, confidence=confidence))
        return True

    async def shutdown(self) -> None:
        for provider_call_id in list(self._sessions):
            await self.stop(provider_call_id)
