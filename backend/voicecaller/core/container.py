"""
Service Container
Builds providers and call services from Settings + YAML provider config
"""
import logging
from dataclasses import dataclass
from typing import Optional

from voicecaller.core.config import ConfigManager, Settings
from voicecaller.domain.interfaces.call_store import CallStore
from voicecaller.domain.interfaces.llm_provider import LLMProvider
from voicecaller.domain.interfaces.stt_provider import STTProvider
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider
from voicecaller.domain.interfaces.tts_provider import TTSProvider
from voicecaller.domain.services.call_orchestrator import CallOrchestrator
from voicecaller.domain.services.call_state_machine import CallStateMachine
from voicecaller.domain.services.conversation_coordinator import ConversationCoordinator
from voicecaller.domain.services.deferred_tasks import DeferredTaskRegistry
from voicecaller.domain.services.llm_guardrails import LLMGuardrails, LLMGuardrailsConfig
from voicecaller.domain.services.silence_watchdog import SilenceWatchdog
from voicecaller.domain.services.speech_recognition import RecognitionSessionManager
from voicecaller.domain.services.speech_synthesis import SpeechSynthesisPipeline
from voicecaller.domain.services.webhook_dispatcher import WebhookDispatcher
from voicecaller.infrastructure.llm.factory import LLMFactory
from voicecaller.infrastructure.storage.memory_call_store import InMemoryCallStore
from voicecaller.infrastructure.stt.factory import STTFactory
from voicecaller.infrastructure.telephony.factory import TelephonyFactory
from voicecaller.infrastructure.tts.factory import TTSFactory
from voicecaller.workers.reconciler import BackgroundReconciler

logger = logging.getLogger(__name__)


@dataclass
class CallServices:
    """Everything the API layer needs, wired once per process"""
    settings: Settings
    store: CallStore
    telephony: TelephonyProvider
    stt: Optional[STTProvider]
    stt_fallback: Optional[STTProvider]
    tts: Optional[TTSProvider]
    llm: Optional[LLMProvider]
    state_machine: CallStateMachine
    recognition: RecognitionSessionManager
    synthesis: SpeechSynthesisPipeline
    coordinator: ConversationCoordinator
    watchdog: SilenceWatchdog
    deferred: DeferredTaskRegistry
    orchestrator: CallOrchestrator
    dispatcher: WebhookDispatcher
    reconciler: BackgroundReconciler

    async def shutdown(self) -> None:
        await self.reconciler.stop()
        await self.orchestrator.shutdown()
        for provider in (self.stt, self.stt_fallback, self.tts, self.llm, self.telephony):
            if provider is None:
                continue
            try:
                await provider.cleanup()
            except Exception as e:
                logger.error(f"Error cleaning up {provider.name}: {e}")


def build_store(settings: Settings) -> CallStore:
    if settings.store_backend == "supabase":
        from voicecaller.infrastructure.storage.supabase_call_store import SupabaseCallStore

        if not settings.supabase_url or not settings.supabase_service_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set for the supabase store")
        logger.info("Using Supabase call store")
        return SupabaseCallStore.from_credentials(settings.supabase_url, settings.supabase_service_key)

    logger.info("Using in-memory call store")
    return InMemoryCallStore()


async def build_telephony(settings: Settings) -> TelephonyProvider:
    telephony = TelephonyFactory.create("telnyx")
    await telephony.initialize({
        "api_key": settings.telnyx_api_key,
        "connection_id": settings.telnyx_connection_id,
        "from_number": settings.telnyx_phone_number,
        "api_base": settings.telnyx_api_base,
        "speak_timeout": settings.telephony_speak_timeout,
        "playback_timeout": settings.telephony_playback_timeout,
    })
    return telephony


def _api_key(settings: Settings, provider_name: str) -> Optional[str]:
    return getattr(settings, f"{provider_name.replace('-', '_')}_api_key", None)


async def _initialized(provider, config: dict, kind: str):
    """Initialize a provider; one missing its credentials is left out"""
    try:
        await provider.initialize(config)
    except ValueError as e:
        logger.warning(f"{kind} provider '{provider.name}' not configured: {e}")
        return None
    logger.info(f"{kind} provider '{provider.name}' ready")
    return provider


async def build_services(settings: Settings, config: ConfigManager) -> CallServices:
    """Create, initialize and wire every provider and service"""
    store = build_store(settings)
    telephony = await build_telephony(settings)

    stt_name = config.get_active_provider("stt") or "deepgram"
    stt_config = config.get_provider_config("stt", stt_name)
    stt_config["api_key"] = stt_config.get("api_key") or _api_key(settings, stt_name)
    stt_config.setdefault("connect_timeout", settings.recognition_connect_timeout)
    stt = await _initialized(STTFactory.create(stt_name), stt_config, "STT")

    fallback_config = config.get_provider_config("stt", "telnyx-native")
    fallback_config["telephony"] = telephony
    stt_fallback = await _initialized(STTFactory.create("telnyx-native"), fallback_config, "STT fallback")

    tts_name = config.get_active_provider("tts") or "elevenlabs"
    tts_config = config.get_provider_config("tts", tts_name)
    tts_config["api_key"] = tts_config.get("api_key") or _api_key(settings, tts_name)
    tts_config.setdefault("timeout", settings.synthesis_timeout)
    tts = await _initialized(TTSFactory.create(tts_name), tts_config, "TTS")

    llm_name = config.get_active_provider("llm") or "groq"
    llm_config = config.get_provider_config("llm", llm_name)
    llm_config["api_key"] = llm_config.get("api_key") or _api_key(settings, llm_name)
    llm = await _initialized(LLMFactory.create(llm_name), llm_config, "LLM")

    voice_config = config.get_provider_config("tts", "telnyx-voice")

    state_machine = CallStateMachine(store)
    recognition = RecognitionSessionManager(
        telephony,
        primary=stt,
        fallback=stt_fallback,
        audio_stream_url=settings.audio_stream_url,
        min_transcript_length=settings.min_transcript_length,
    )
    synthesis = SpeechSynthesisPipeline(
        telephony,
        primary=tts,
        synthesis_timeout=settings.synthesis_timeout,
        fallback_voice=voice_config.get("voice", "male"),
        fallback_language=voice_config.get("language", "en-US"),
    )
    coordinator = ConversationCoordinator(
        llm,
        guardrails=LLMGuardrails(LLMGuardrailsConfig(max_response_time_seconds=settings.llm_timeout)),
        persona=config.get_agent_persona(),
        max_turns=settings.max_conversation_turns,
        history_window=settings.history_window,
        llm_timeout=settings.llm_timeout,
    )
    watchdog = SilenceWatchdog(
        timeout=settings.silence_timeout,
        max_consecutive_silences=settings.max_consecutive_silences,
    )
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
        webhook_url=settings.webhook_url,
        answer_delay=settings.answer_delay,
        listen_delay=settings.listen_delay,
    )
    dispatcher = WebhookDispatcher(store, orchestrator)
    reconciler = BackgroundReconciler(
        store,
        state_machine,
        telephony,
        orchestrator,
        progress_interval=settings.progress_sweep_interval,
        analysis_interval=settings.analysis_sweep_interval,
        progress_batch_size=settings.progress_batch_size,
        analysis_batch_size=settings.analysis_batch_size,
        stale_after_seconds=settings.stale_after_seconds,
        max_call_duration_seconds=settings.max_call_duration_seconds,
    )

    return CallServices(
        settings=settings,
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
        reconciler=reconciler,
    )
