"""
Cartesia TTS Provider Implementation
Low latency Sonic voice, collected into a WAV clip for call playback
"""
import io
import os
import wave
from typing import Dict, Optional
from cartesia import AsyncCartesia

from voicecaller.core.errors import ProviderUnavailableError
from voicecaller.domain.interfaces.tts_provider import TTSProvider, SynthesizedAudio
from voicecaller.domain.services.text_shaping import strip_container_markup


class CartesiaTTSProvider(TTSProvider):
    """Cartesia Sonic TTS provider"""

    VALID_SAMPLE_RATES = [8000, 16000, 22050, 24000, 44100]

    def __init__(self):
        self._client: Optional[AsyncCartesia] = None
        self._config: Dict = {}
        self._model_id: str = "sonic-2"
        self._voice_id: str = ""
        self._sample_rate: int = 8000

    async def initialize(self, config: dict) -> None:
        """Initialize Cartesia client with configuration"""
        self._config = config
        api_key = config.get("api_key") or os.getenv("CARTESIA_API_KEY")

        if not api_key:
            raise ValueError("Cartesia API key not found in config or environment")

        self._client = AsyncCartesia(api_key=api_key)

        self._model_id = config.get("model_id", "sonic-2")
        self._voice_id = config.get("voice_id", "6ccbfb76-1fc6-48f7-b71d-91ac6298247b")
        self._sample_rate = config.get("sample_rate", 8000)

        if self._sample_rate not in self.VALID_SAMPLE_RATES:
            raise ValueError(f"Invalid sample rate {self._sample_rate}. Must be one of {self.VALID_SAMPLE_RATES}")

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesizedAudio:
        if not self._client:
            raise ProviderUnavailableError("Cartesia client not initialized", provider=self.name)

        pcm = bytearray()
        try:
            # SDK v1: tts.sse() returns a coroutine, must await it first
            sse_stream = await self._client.tts.sse(
                model_id=self._model_id,
                transcript=strip_container_markup(text),
                voice_id=voice_id or self._voice_id,
                language="en",
                output_format={
                    "container": "raw",
                    "sample_rate": self._sample_rate,
                    "encoding": "pcm_s16le"
                },
                stream=True
            )

            async for chunk in sse_stream:
                audio_data = chunk.get('audio') if isinstance(chunk, dict) else chunk
                if audio_data:
                    pcm.extend(audio_data)

        except Exception as e:
            raise ProviderUnavailableError(f"Cartesia TTS synthesis failed: {str(e)}", provider=self.name) from e

        if not pcm:
            raise ProviderUnavailableError("Cartesia returned empty audio", provider=self.name)

        return SynthesizedAudio(self._to_wav(bytes(pcm)), mime_type="audio/wav")

    def _to_wav(self, pcm: bytes) -> bytes:
        """Wrap 16-bit mono PCM in a WAV container"""
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(self._sample_rate)
            wav.writeframes(pcm)
        return buffer.getvalue()

    async def cleanup(self) -> None:
        """Release resources"""
        self._client = None

    @property
    def name(self) -> str:
        return "cartesia"

    def __repr__(self) -> str:
        return f"CartesiaTTSProvider(model={self._model_id}, voice={self._voice_id})"
