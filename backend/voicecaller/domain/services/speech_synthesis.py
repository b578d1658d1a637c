"""
Speech Synthesis Pipeline

shape -> primary neural voice -> telephony playback, falling back to the
telephony provider's built-in voice with the same shaped text.
"""
import asyncio
import logging
from typing import Optional

from voicecaller.core.errors import ProviderTimeoutError, VoiceCallerError
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider
from voicecaller.domain.interfaces.tts_provider import TTSProvider
from voicecaller.domain.models.results import OperationResult
from voicecaller.domain.services.text_shaping import shape

logger = logging.getLogger(__name__)


class SpeechSynthesisPipeline:

    def __init__(
        self,
        telephony: TelephonyProvider,
        primary: Optional[TTSProvider] = None,
        synthesis_timeout: float = 10.0,
        fallback_voice: str = "male",
        fallback_language: str = "en-US",
    ):
        self._telephony = telephony
        self._primary = primary
        self._synthesis_timeout = synthesis_timeout
        self._fallback_voice = fallback_voice
        self._fallback_language = fallback_language

    @property
    def primary_name(self) -> Optional[str]:
        return self._primary.name if self._primary else None

    async def speak(self, provider_call_id: str, text: str) -> OperationResult:
        """
        Speak `text` on the call.

        Returns success when either path played audio; used_fallback and
        note record which one. Failure means both paths failed.
        """
        shaped = shape(text)
        if not shaped:
            return OperationResult.failed("empty text", shaped_text=shaped)

        primary_error: Optional[str] = None
        if self._primary is None:
            primary_error = "primary voice not configured"
        else:
            try:
                await self._speak_primary(provider_call_id, shaped)
                return OperationResult.ok(self._primary.name, shaped_text=shaped)
            except VoiceCallerError as e:
                primary_error = str(e)
                logger.warning(f"Primary voice failed for {provider_call_id}, falling back: {e}")

        try:
            await self._telephony.speak(
                provider_call_id,
                shaped,
                voice=self._fallback_voice,
                language=self._fallback_language,
            )
        except VoiceCallerError as e:
            logger.error(f"Fallback voice failed for {provider_call_id}: {e}")
            return OperationResult.failed(
                f"primary: {primary_error}; fallback: {e}",
                provider=self._telephony.name,
                used_fallback=True,
                shaped_text=shaped,
            )

        return OperationResult.ok(
            self._telephony.name,
            used_fallback=True,
            note=f"fallback voice used ({primary_error})",
            shaped_text=shaped,
        )

    async def _speak_primary(self, provider_call_id: str, shaped: str) -> None:
        try:
            audio = await asyncio.wait_for(self._primary.synthesize(shaped), timeout=self._synthesis_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f"{self._primary.name} synthesis timed out", provider=self._primary.name) from e

        await self._telephony.play_audio(provider_call_id, audio.data, mime_type=audio.mime_type)
