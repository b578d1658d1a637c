"""
Telephony Provider Interface
Abstract base class for call-control providers
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict


class TelephonyProvider(ABC):
    """Abstract base class for telephony providers"""

    @abstractmethod
    async def initialize(self, config: dict) -> None:
        """Initialize the provider with configuration"""
        pass

    @abstractmethod
    async def place_call(
        self,
        to_number: str,
        from_number: str,
        webhook_url: str,
        client_state: Optional[str] = None
    ) -> str:
        """
        Initiate an outbound call

        Returns:
            Provider call identifier
        """
        pass

    @abstractmethod
    async def speak(self, provider_call_id: str, ssml: str, voice: str = "male", language: str = "en-US") -> None:
        """Play text with the provider's built-in voice"""
        pass

    @abstractmethod
    async def play_audio(self, provider_call_id: str, audio: bytes, mime_type: str = "audio/mpeg") -> None:
        """Play pre-synthesized audio on the call"""
        pass

    @abstractmethod
    async def start_streaming(
        self,
        provider_call_id: str,
        stream_url: Optional[str] = None,
        transcription: bool = False
    ) -> None:
        """Start forwarding call audio (and optionally native transcription)"""
        pass

    @abstractmethod
    async def stop_streaming(self, provider_call_id: str) -> None:
        pass

    @abstractmethod
    async def stop_transcription(self, provider_call_id: str) -> None:
        pass

    @abstractmethod
    async def start_recording(self, provider_call_id: str) -> None:
        pass

    @abstractmethod
    async def stop_recording(self, provider_call_id: str) -> None:
        pass

    @abstractmethod
    async def hangup(self, provider_call_id: str) -> None:
        """End an active call"""
        pass

    @abstractmethod
    async def get_call_status(self, provider_call_id: str) -> Dict:
        """
        Current provider-side call state

        Returns:
            {"call_state": "ringing" | "active" | "completed" | ..., "is_alive": bool}
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
