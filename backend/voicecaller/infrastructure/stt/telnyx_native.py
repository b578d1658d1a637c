"""
Telnyx native transcription (fallback recognizer)

Telnyx transcribes the call itself and posts results to the
speech-stream webhook; the recognition manager pushes those onto
the session queue, so this stream never receives audio.
"""
import asyncio
import logging
from typing import Optional

from voicecaller.core.errors import ProviderUnavailableError, VoiceCallerError
from voicecaller.domain.interfaces.stt_provider import STTProvider, RecognitionStream
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider

logger = logging.getLogger(__name__)


class TelnyxNativeStream(RecognitionStream):

    def __init__(self, telephony: TelephonyProvider, provider_call_id: str):
        self._telephony = telephony
        self._provider_call_id = provider_call_id
        self._closed = False

    async def send_audio(self, audio: bytes) -> None:
        # Audio stays inside Telnyx
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._telephony.stop_transcription(self._provider_call_id)
        except VoiceCallerError as e:
            logger.warning(f"transcription_stop failed for {self._provider_call_id}: {e}")


class TelnyxNativeSTTProvider(STTProvider):

    def __init__(self, telephony: Optional[TelephonyProvider] = None):
        self._telephony = telephony

    async def initialize(self, config: dict) -> None:
        if config.get("telephony") is not None:
            self._telephony = config["telephony"]

    async def open_stream(self, provider_call_id: str, sink: asyncio.Queue) -> RecognitionStream:
        if self._telephony is None:
            raise ProviderUnavailableError("No telephony client for native transcription", provider=self.name)

        try:
            await self._telephony.start_streaming(provider_call_id, transcription=True)
        except VoiceCallerError as e:
            raise ProviderUnavailableError(f"transcription_start failed: {e}", provider=self.name) from e

        logger.info(f"Telnyx native transcription started for {provider_call_id}")
        return TelnyxNativeStream(self._telephony, provider_call_id)

    @property
    def forwards_audio(self) -> bool:
        return False

    async def cleanup(self) -> None:
        self._telephony = None

    @property
    def name(self) -> str:
        return "telnyx-native"
