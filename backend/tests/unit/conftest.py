"""
Shared fakes and fixtures for unit tests

The fakes implement the provider interfaces in memory and record every
call made to them, so tests can assert on side effects without network.
"""
import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from voicecaller.core.errors import ProviderUnavailableError
from voicecaller.domain.interfaces.llm_provider import LLMProvider
from voicecaller.domain.interfaces.stt_provider import RecognitionStream, STTProvider
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider
from voicecaller.domain.interfaces.tts_provider import SynthesizedAudio, TTSProvider
from voicecaller.domain.models.call import Call, CallStatus
from voicecaller.domain.services.call_orchestrator import CallOrchestrator
from voicecaller.domain.services.call_state_machine import CallStateMachine
from voicecaller.domain.services.conversation_coordinator import ConversationCoordinator
from voicecaller.domain.services.deferred_tasks import DeferredTaskRegistry
from voicecaller.domain.services.silence_watchdog import SilenceWatchdog
from voicecaller.domain.services.speech_recognition import RecognitionSessionManager
from voicecaller.domain.services.speech_synthesis import SpeechSynthesisPipeline
from voicecaller.domain.services.webhook_dispatcher import WebhookDispatcher
from voicecaller.infrastructure.storage.memory_call_store import InMemoryCallStore


class FakeTelephony(TelephonyProvider):
    """Records actions; `failures` maps an action name to the error it raises"""

    def __init__(self):
        self.actions: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.call_states: Dict[str, Dict[str, Any]] = {}
        self.next_call_id = "pid-1"

    def _record(self, action: str, *args) -> None:
        self.actions.append((action, *args))
        if action in self.failures:
            raise self.failures[action]

    def calls_to(self, action: str) -> List[tuple]:
        return [a for a in self.actions if a[0] == action]

    async def initialize(self, config: dict) -> None:
        pass

    async def place_call(self, to_number, from_number=None, webhook_url=None, client_state=None) -> str:
        self._record("place_call", to_number, client_state)
        return self.next_call_id

    async def speak(self, provider_call_id, ssml, voice="male", language="en-US") -> None:
        self._record("speak", provider_call_id, ssml)

    async def play_audio(self, provider_call_id, audio, mime_type="audio/mpeg") -> None:
        self._record("play_audio", provider_call_id, audio)

    async def start_streaming(self, provider_call_id, stream_url=None, transcription=False) -> None:
        self._record("start_streaming", provider_call_id, transcription)

    async def stop_streaming(self, provider_call_id) -> None:
        self._record("stop_streaming", provider_call_id)

    async def stop_transcription(self, provider_call_id) -> None:
        self._record("stop_transcription", provider_call_id)

    async def start_recording(self, provider_call_id) -> None:
        self._record("start_recording", provider_call_id)

    async def stop_recording(self, provider_call_id) -> None:
        self._record("stop_recording", provider_call_id)

    async def hangup(self, provider_call_id) -> None:
        self._record("hangup", provider_call_id)

    async def get_call_status(self, provider_call_id) -> Dict:
        self._record("get_call_status", provider_call_id)
        return self.call_states.get(provider_call_id, {"call_state": "active", "is_alive": True})

    async def cleanup(self) -> None:
        pass

    @property
    def name(self) -> str:
        return "fake-telephony"


class FakeStream(RecognitionStream):

    def __init__(self):
        self.audio: List[bytes] = []
        self.closed = False

    async def send_audio(self, audio: bytes) -> None:
        self.audio.append(audio)

    async def close(self) -> None:
        self.closed = True


class FakeSTT(STTProvider):
    """Keeps each session's queue so tests can push TranscriptChunks into it"""

    def __init__(self, name: str = "fake-stt", forwards_audio: bool = True, error: Optional[Exception] = None):
        self._name = name
        self._forwards_audio = forwards_audio
        self.error = error
        self.sinks: Dict[str, asyncio.Queue] = {}
        self.streams: Dict[str, FakeStream] = {}
        self.opened = 0

    async def initialize(self, config: dict) -> None:
        pass

    async def open_stream(self, provider_call_id: str, sink: asyncio.Queue) -> RecognitionStream:
        if self.error is not None:
            raise self.error
        self.opened += 1
        stream = FakeStream()
        self.sinks[provider_call_id] = sink
        self.streams[provider_call_id] = stream
        return stream

    @property
    def forwards_audio(self) -> bool:
        return self._forwards_audio

    async def cleanup(self) -> None:
        pass

    @property
    def name(self) -> str:
        return self._name


class FakeTTS(TTSProvider):

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.texts: List[str] = []

    async def initialize(self, config: dict) -> None:
        pass

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesizedAudio:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return SynthesizedAudio(b"ID3-fake-audio", "audio/mpeg")

    async def cleanup(self) -> None:
        pass

    @property
    def name(self) -> str:
        return "fake-tts"


class FakeLLM(LLMProvider):
    """Replies from a script; an Exception in the script is raised instead"""

    def __init__(self, replies: Optional[List[Any]] = None, default: str = "That sounds great. Tell me more?"):
        self.replies = list(replies or [])
        self.default = default
        self.requests: List[Dict[str, Any]] = []

    async def initialize(self, config: dict) -> None:
        pass

    async def stream_chat(self, messages, system_prompt=None, temperature=None, max_tokens=None, **kwargs):
        self.requests.append({"messages": list(messages), "system_prompt": system_prompt})
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        for word in reply.split(" "):
            yield word + " "

    async def cleanup(self) -> None:
        pass

    @property
    def name(self) -> str:
        return "fake-llm"


@pytest.fixture
def store():
    return InMemoryCallStore()


@pytest.fixture
def telephony():
    return FakeTelephony()


@pytest.fixture
def seed_call(store):
    """Async helper: persist a Call with the given fields"""

    async def _seed(call_id: str = "call-1", provider_call_id: Optional[str] = "pid-1", **fields) -> Call:
        call = Call(id=call_id, provider_call_id=provider_call_id, phone_number="+15551234567", **fields)
        await store.create(call)
        return call

    return _seed


@pytest.fixture
def make_harness(store, telephony):
    """
    Build a full orchestrator over fakes.

    Delays default to zero and the silence timeout to 50ms so tests can
    drive the whole call lifecycle quickly.
    """

    def _make(
        stt: Optional[STTProvider] = None,
        stt_fallback: Optional[STTProvider] = None,
        tts: Optional[TTSProvider] = None,
        llm: Optional[LLMProvider] = None,
        silence_timeout: float = 0.05,
        max_silences: int = 3,
        max_turns: int = 8,
        answer_delay: float = 0.0,
        listen_delay: float = 0.0,
    ) -> SimpleNamespace:
        stt = stt if stt is not None else FakeSTT()
        stt_fallback = stt_fallback if stt_fallback is not None else FakeSTT("fake-native", forwards_audio=False)
        tts = tts if tts is not None else FakeTTS()

        state_machine = CallStateMachine(store)
        recognition = RecognitionSessionManager(telephony, stt, stt_fallback, audio_stream_url="wss://test/ws")
        synthesis = SpeechSynthesisPipeline(telephony, primary=tts)
        coordinator = ConversationCoordinator(llm, max_turns=max_turns)
        watchdog = SilenceWatchdog(timeout=silence_timeout, max_consecutive_silences=max_silences)
        deferred = DeferredTaskRegistry()
        orchestrator = CallOrchestrator(
            store,
            state_machine,
            telephony,
            recognition,
            synthesis,
            coordinator,
            watchdog,
            deferred,
            webhook_url="https://test/api/v1/webhooks/telnyx",
            answer_delay=answer_delay,
            listen_delay=listen_delay,
            closing_grace_seconds=0.05,
        )
        dispatcher = WebhookDispatcher(store, orchestrator)

        return SimpleNamespace(
            store=store,
            telephony=telephony,
            stt=stt,
            stt_fallback=stt_fallback,
            tts=tts,
            llm=llm,
            state_machine=state_machine,
            recognition=recognition,
            synthesis=synthesis,
            coordinator=coordinator,
            watchdog=watchdog,
            deferred=deferred,
            orchestrator=orchestrator,
            dispatcher=dispatcher,
        )

    return _make


def telnyx_event(
    event_type: str,
    call_control_id: Optional[str] = "pid-1",
    event_id: Optional[str] = None,
    **payload
) -> Dict[str, Any]:
    """Build a Telnyx webhook body"""
    body_payload = dict(payload)
    if call_control_id is not None:
        body_payload["call_control_id"] = call_control_id
    data = {"event_type": event_type, "payload": body_payload}
    if event_id:
        data["id"] = event_id
    return {"data": data}


async def settle(seconds: float = 0.0) -> None:
    """Let scheduled tasks run"""
    await asyncio.sleep(seconds)
    for _ in range(5):
        await asyncio.sleep(0)


UNAVAILABLE = ProviderUnavailableError("backend down", provider="fake")
