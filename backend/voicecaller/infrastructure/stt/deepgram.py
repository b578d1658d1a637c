"""
Deepgram Live STT Provider
Direct WebSocket connection to Deepgram's /v1/listen endpoint,
tuned for 8 kHz mulaw phone audio with interim results disabled.
"""
import os
import json
import asyncio
import logging
from typing import Optional
from urllib.parse import urlencode

import websockets

from voicecaller.core.errors import ProviderTimeoutError, ProviderUnavailableError
from voicecaller.domain.interfaces.stt_provider import STTProvider, RecognitionStream
from voicecaller.domain.models.conversation import TranscriptChunk

logger = logging.getLogger(__name__)


class DeepgramLiveStream(RecognitionStream):
    """One open Deepgram WebSocket for a single call"""

    def __init__(self, ws, provider_call_id: str, sink: asyncio.Queue):
        self._ws = ws
        self._provider_call_id = provider_call_id
        self._sink = sink
        self._closed = False
        self._receiver: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._receiver = asyncio.create_task(
            self._receive(), name=f"deepgram-recv-{self._provider_call_id}"
        )

    async def send_audio(self, audio: bytes) -> None:
        if self._closed:
            return
        try:
            await self._ws.send(audio)
        except websockets.exceptions.ConnectionClosed as e:
            self._closed = True
            await self._sink.put(ProviderUnavailableError(f"Deepgram connection closed: {e}", provider="deepgram"))

    async def _receive(self) -> None:
        """Translate Deepgram Results messages into TranscriptChunks"""
        try:
            async for message in self._ws:
                data = json.loads(message)
                if data.get("type") != "Results":
                    continue

                alternatives = data.get("channel", {}).get("alternatives", [])
                if not alternatives:
                    continue

                transcript = alternatives[0].get("transcript", "")
                if not transcript:
                    continue

                await self._sink.put(TranscriptChunk(
                    text=transcript,
                    is_final=bool(data.get("is_final")),
                    confidence=alternatives[0].get("confidence"),
                ))
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosedOK:
            pass
        except Exception as e:
            if not self._closed:
                logger.error(f"Deepgram receive error for {self._provider_call_id}: {e}")
                await self._sink.put(ProviderUnavailableError(f"Deepgram stream failed: {e}", provider="deepgram"))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        try:
            await self._ws.send(json.dumps({"type": "CloseStream"}))
        except websockets.exceptions.ConnectionClosed:
            pass

        if self._receiver and not self._receiver.done():
            self._receiver.cancel()
            try:
                await self._receiver
            except asyncio.CancelledError:
                pass

        await self._ws.close()


class DeepgramSTTProvider(STTProvider):
    """
    Deepgram nova-2 live transcription for phone calls.

    Only finalized results are useful to the caller; interim_results is
    disabled server-side and is_final is still checked downstream.
    """

    LISTEN_URL = "wss://api.deepgram.com/v1/listen"

    def __init__(self):
        self._api_key: Optional[str] = None
        self._config: dict = {}
        self._connect_timeout: float = 5.0

    async def initialize(self, config: dict) -> None:
        """Initialize Deepgram with configuration"""
        self._config = config
        self._api_key = config.get("api_key") or os.getenv("DEEPGRAM_API_KEY")
        if not self._api_key:
            raise ValueError("DEEPGRAM_API_KEY not set")

        self._connect_timeout = config.get("connect_timeout", 5.0)
        logger.info(f"Deepgram initialized: model={config.get('model', 'nova-2-phonecall')}")

    def _build_url(self) -> str:
        params = {
            "model": self._config.get("model", "nova-2-phonecall"),
            "language": self._config.get("language", "en-US"),
            "encoding": self._config.get("encoding", "mulaw"),
            "sample_rate": self._config.get("sample_rate", 8000),
            "channels": self._config.get("channels", 1),
            "interim_results": "false",
            "punctuate": "true",
            "smart_format": "true",
            "endpointing": self._config.get("endpointing", 250),
        }
        return f"{self.LISTEN_URL}?{urlencode(params)}"

    async def open_stream(self, provider_call_id: str, sink: asyncio.Queue) -> RecognitionStream:
        if not self._api_key:
            raise ProviderUnavailableError("Deepgram not initialized", provider=self.name)

        headers = {"Authorization": f"Token {self._api_key}"}
        try:
            ws = await asyncio.wait_for(
                websockets.connect(self._build_url(), additional_headers=headers),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError("Deepgram connect timed out", provider=self.name) from e
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise ProviderUnavailableError(f"Deepgram connect failed: {e}", provider=self.name) from e

        stream = DeepgramLiveStream(ws, provider_call_id, sink)
        stream.start()
        logger.info(f"Deepgram stream opened for {provider_call_id}")
        return stream

    @property
    def forwards_audio(self) -> bool:
        return True

    async def cleanup(self) -> None:
        self._api_key = None

    @property
    def name(self) -> str:
        return "deepgram"
