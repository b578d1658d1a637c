"""
TTS Provider Factory
"""
from typing import Dict, Type
from voicecaller.domain.interfaces.tts_provider import TTSProvider


class TTSFactory:
    """Factory for creating TTS provider instances"""

    _providers: Dict[str, Type[TTSProvider]] = {}

    @classmethod
    def create(cls, provider_name: str) -> TTSProvider:
        """Create an (uninitialized) TTS provider"""
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(f"Unknown TTS provider: {provider_name}. Available: {available}")

        provider_class = cls._providers[provider_name]
        return provider_class()

    @classmethod
    def register(cls, name: str, provider_class: Type[TTSProvider]) -> None:
        """Register a provider"""
        cls._providers[name] = provider_class

    @classmethod
    def list_providers(cls) -> list[str]:
        """List available providers"""
        return list(cls._providers.keys())


from voicecaller.infrastructure.tts.cartesia import CartesiaTTSProvider
from voicecaller.infrastructure.tts.elevenlabs import ElevenLabsTTSProvider

TTSFactory.register("elevenlabs", ElevenLabsTTSProvider)
TTSFactory.register("cartesia", CartesiaTTSProvider)
