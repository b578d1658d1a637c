"""
STT Provider Factory
Creates STT provider instances based on configuration
"""
from typing import Dict, Type
from voicecaller.domain.interfaces.stt_provider import STTProvider


class STTFactory:
    """Factory for creating STT provider instances"""

    _providers: Dict[str, Type[STTProvider]] = {}

    @classmethod
    def create(cls, provider_name: str) -> STTProvider:
        """
        Create an (uninitialized) STT provider

        Raises:
            ValueError: If provider not found
        """
        if provider_name not in cls._providers:
            available = ", ".join(cls._providers.keys()) if cls._providers else "None"
            raise ValueError(
                f"Unknown STT provider: {provider_name}. "
                f"Available: {available}"
            )

        provider_class = cls._providers[provider_name]
        return provider_class()

    @classmethod
    def register(cls, name: str, provider_class: Type[STTProvider]) -> None:
        """Register a custom provider"""
        cls._providers[name] = provider_class

    @classmethod
    def list_providers(cls) -> list[str]:
        """Get list of available provider names"""
        return list(cls._providers.keys())


from voicecaller.infrastructure.stt.deepgram import DeepgramSTTProvider
from voicecaller.infrastructure.stt.telnyx_native import TelnyxNativeSTTProvider

STTFactory.register("deepgram", DeepgramSTTProvider)
STTFactory.register("telnyx-native", TelnyxNativeSTTProvider)
