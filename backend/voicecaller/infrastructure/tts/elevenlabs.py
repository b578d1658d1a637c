"""
ElevenLabs TTS Provider
Synthesizes complete MP3 clips via the ElevenLabs REST API
"""
import os
import logging
from typing import Optional

import httpx

from voicecaller.core.errors import ProviderTimeoutError, ProviderUnavailableError
from voicecaller.domain.interfaces.tts_provider import TTSProvider, SynthesizedAudio
from voicecaller.domain.services.text_shaping import strip_container_markup

logger = logging.getLogger(__name__)


class ElevenLabsTTSProvider(TTSProvider):
    """ElevenLabs turbo voice, output sized for telephone playback"""

    API_BASE = "https://api.elevenlabs.io/v1"

    def __init__(self):
        self._client: Optional[httpx.AsyncClient] = None
        self._voice_id: str = "pNInz6obpgDQGcFmaJgB"
        self._model_id: str = "eleven_turbo_v2"
        self._output_format: str = "mp3_22050_32"
        self._voice_settings: dict = {}

    async def initialize(self, config: dict) -> None:
        """Initialize ElevenLabs client with configuration"""
        api_key = config.get("api_key") or os.getenv("ELEVENLABS_API_KEY")
        if not api_key:
            raise ValueError("ElevenLabs API key not found in config or environment")

        self._voice_id = config.get("voice_id", self._voice_id)
        self._model_id = config.get("model_id", self._model_id)
        self._output_format = config.get("output_format", self._output_format)
        self._voice_settings = {
            "stability": config.get("stability", 0.6),
            "similarity_boost": config.get("similarity_boost", 0.8),
            "style": config.get("style", 0.2),
            "use_speaker_boost": True,
        }

        self._client = httpx.AsyncClient(
            base_url=self.API_BASE,
            headers={"xi-api-key": api_key, "Accept": "audio/mpeg"},
            timeout=config.get("timeout", 10.0),
        )

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesizedAudio:
        if not self._client:
            raise ProviderUnavailableError("ElevenLabs client not initialized", provider=self.name)

        voice = voice_id or self._voice_id
        try:
            response = await self._client.post(
                f"/text-to-speech/{voice}",
                params={"output_format": self._output_format},
                json={
                    "text": strip_container_markup(text),
                    "model_id": self._model_id,
                    "voice_settings": self._voice_settings,
                },
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError("ElevenLabs synthesis timed out", provider=self.name) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"ElevenLabs synthesis failed: {e}", provider=self.name) from e

        if not response.content:
            raise ProviderUnavailableError("ElevenLabs returned empty audio", provider=self.name)

        logger.debug(f"ElevenLabs synthesized {len(response.content)} bytes")
        return SynthesizedAudio(response.content, mime_type="audio/mpeg")

    async def cleanup(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def name(self) -> str:
        return "elevenlabs"

    def __repr__(self) -> str:
        return f"ElevenLabsTTSProvider(model={self._model_id}, voice={self._voice_id})"
