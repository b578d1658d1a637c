"""
STT Provider Interface
Abstract base classes for streaming Speech-to-Text backends

Backends never call into the conversation layer directly. They push
TranscriptChunk items (or an Exception) onto the queue handed to
open_stream; the recognition manager is the only consumer.
"""
import asyncio
from abc import ABC, abstractmethod


class RecognitionStream(ABC):
    """Handle for one open recognition session"""

    @abstractmethod
    async def send_audio(self, audio: bytes) -> None:
        """Forward raw call audio to the recognizer"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the provider connection; safe to call twice"""
        pass


class STTProvider(ABC):
    """Abstract base class for Speech-to-Text providers"""

    @abstractmethod
    async def initialize(self, config: dict) -> None:
        """Initialize the provider with configuration"""
        pass

    @abstractmethod
    async def open_stream(self, provider_call_id: str, sink: asyncio.Queue) -> RecognitionStream:
        """
        Open a streaming session for one call.

        Raises:
            ProviderUnavailableError: If the backend cannot be reached
        """
        pass

    @property
    @abstractmethod
    def forwards_audio(self) -> bool:
        """True when call audio must be streamed to us and relayed to the backend"""
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
