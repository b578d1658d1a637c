"""
Unit tests for the Speech Synthesis Pipeline
Tests primary playback, fallback voice and total failure
"""
import asyncio

import pytest

from conftest import FakeTTS
from voicecaller.core.errors import ProviderRejectedError, ProviderUnavailableError
from voicecaller.domain.services.speech_synthesis import SpeechSynthesisPipeline
from voicecaller.domain.services.text_shaping import shape


class SlowTTS(FakeTTS):
    async def synthesize(self, text, voice_id=None):
        await asyncio.sleep(1)
        return await super().synthesize(text, voice_id)


class TestPrimaryVoice:

    @pytest.mark.asyncio
    async def test_primary_success_plays_audio(self, telephony):
        tts = FakeTTS()
        pipeline = SpeechSynthesisPipeline(telephony, primary=tts)

        result = await pipeline.speak("pid-1", "Hi there, how are you?")

        assert result.success is True
        assert result.used_fallback is False
        assert result.provider == "fake-tts"
        assert len(telephony.calls_to("play_audio")) == 1
        assert telephony.calls_to("speak") == []
        assert tts.texts == [shape("Hi there, how are you?")]

    @pytest.mark.asyncio
    async def test_empty_text_fails_without_calls(self, telephony):
        pipeline = SpeechSynthesisPipeline(telephony, primary=FakeTTS())

        result = await pipeline.speak("pid-1", "   ")

        assert result.success is False
        assert telephony.actions == []


class TestFallbackVoice:

    @pytest.mark.asyncio
    async def test_primary_failure_falls_back_with_same_shaped_text(self, telephony):
        """Primary fails, fallback succeeds: success, fallback note, identical shaped text"""
        tts = FakeTTS(error=ProviderUnavailableError("quota exceeded", provider="fake-tts"))
        pipeline = SpeechSynthesisPipeline(telephony, primary=tts)

        result = await pipeline.speak("pid-1", "Well, what do you think?")

        assert result.success is True
        assert result.used_fallback is True
        assert "fallback voice used" in result.note
        assert "quota exceeded" in result.note
        spoken = telephony.calls_to("speak")
        assert len(spoken) == 1
        assert spoken[0][2] == tts.texts[0] == result.shaped_text

    @pytest.mark.asyncio
    async def test_primary_timeout_falls_back(self, telephony):
        pipeline = SpeechSynthesisPipeline(telephony, primary=SlowTTS(), synthesis_timeout=0.01)

        result = await pipeline.speak("pid-1", "Hello")

        assert result.success is True
        assert result.used_fallback is True
        assert "timed out" in result.note

    @pytest.mark.asyncio
    async def test_playback_failure_falls_back(self, telephony):
        """Audio synthesized but the telephony playback is refused"""
        telephony.failures["play_audio"] = ProviderRejectedError("bad media", provider="fake-telephony")
        pipeline = SpeechSynthesisPipeline(telephony, primary=FakeTTS())

        result = await pipeline.speak("pid-1", "Hello")

        assert result.success is True
        assert result.used_fallback is True
        assert len(telephony.calls_to("speak")) == 1

    @pytest.mark.asyncio
    async def test_no_primary_uses_fallback(self, telephony):
        pipeline = SpeechSynthesisPipeline(telephony, primary=None)

        result = await pipeline.speak("pid-1", "Hello")

        assert result.success is True
        assert result.note == "fallback voice used (primary voice not configured)"

    @pytest.mark.asyncio
    async def test_both_fail(self, telephony):
        telephony.failures["speak"] = ProviderUnavailableError("call gone", provider="fake-telephony")
        tts = FakeTTS(error=ProviderUnavailableError("down", provider="fake-tts"))
        pipeline = SpeechSynthesisPipeline(telephony, primary=tts)

        result = await pipeline.speak("pid-1", "Hello")

        assert result.success is False
        assert "down" in result.error
        assert "call gone" in result.error
