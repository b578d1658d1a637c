"""
TTS Provider Interface
Abstract base class for Text-to-Speech providers
"""
from abc import ABC, abstractmethod
from typing import Optional


class SynthesizedAudio:
    """Complete audio clip ready for playback"""

    def __init__(self, data: bytes, mime_type: str = "audio/mpeg"):
        self.data = data
        self.mime_type = mime_type

    def __len__(self) -> int:
        return len(self.data)


class TTSProvider(ABC):
    """Abstract base class for Text-to-Speech providers"""

    @abstractmethod
    async def initialize(self, config: dict) -> None:
        """Initialize the provider with configuration"""
        pass

    @abstractmethod
    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesizedAudio:
        """
        Convert text to a complete audio clip

        Args:
            text: Shaped text (may contain SSML break/emphasis tags)
            voice_id: Voice identifier, configured default when omitted

        Raises:
            ProviderUnavailableError: On any synthesis failure
        """
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        """Release resources"""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""
        pass
