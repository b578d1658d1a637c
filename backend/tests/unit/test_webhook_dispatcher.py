"""
Unit tests for the Webhook Dispatcher
Tests acknowledgement, dedupe, call resolution and status preconditions
"""
from unittest.mock import AsyncMock

import pytest

from conftest import settle, telnyx_event
from voicecaller.domain.models.call import CallOutcome, CallStatus
from voicecaller.domain.models.webhook_event import encode_client_state


class TestAcknowledgement:
    """Every body is acknowledged; `result` says what happened"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [[], {"data": {}}, {"data": {"payload": {}}}])
    async def test_invalid_bodies(self, make_harness, body):
        h = make_harness()

        ack = await h.dispatcher.handle(body)

        assert ack["status"] == "ok"
        assert ack["result"] == "invalid"

    @pytest.mark.asyncio
    async def test_informational_event_ignored(self, make_harness, seed_call):
        h = make_harness()
        await seed_call()

        ack = await h.dispatcher.handle(telnyx_event("call.speak.started"))

        assert ack["result"] == "ignored"
        assert h.telephony.actions == []

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, make_harness, seed_call):
        h = make_harness()
        await seed_call()

        ack = await h.dispatcher.handle(telnyx_event("call.something.new"))

        assert ack["result"] == "unhandled"

    @pytest.mark.asyncio
    async def test_unknown_call(self, make_harness):
        h = make_harness()

        ack = await h.dispatcher.handle(telnyx_event("call.answered", call_control_id="nope"))

        assert ack["result"] == "unknown_call"
        assert ack["event_type"] == "call.answered"

    @pytest.mark.asyncio
    async def test_handler_error_is_acknowledged_and_noted(self, make_harness, seed_call):
        h = make_harness()
        await seed_call()
        h.orchestrator.on_call_initiated = AsyncMock(side_effect=RuntimeError("boom"))

        ack = await h.dispatcher.handle(telnyx_event("call.initiated"))

        assert ack == {"status": "ok", "result": "error", "event_type": "call.initiated", "call_id": "call-1"}
        call = await h.store.find_by_id("call-1")
        assert any("boom" in note for note in call.notes)


class TestResolution:

    @pytest.mark.asyncio
    async def test_resolve_by_provider_id(self, make_harness, seed_call):
        h = make_harness()
        await seed_call()

        ack = await h.dispatcher.handle(telnyx_event("call.initiated"))

        assert ack["result"] == "processed"
        assert ack["call_id"] == "call-1"
        assert (await h.store.find_by_id("call-1")).status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_client_state_backfills_provider_id(self, make_harness, seed_call):
        """Webhook arrives before the placement response was stored"""
        h = make_harness()
        await seed_call(provider_call_id=None)

        ack = await h.dispatcher.handle(
            telnyx_event("call.initiated", call_control_id="pid-7", client_state=encode_client_state("call-1"))
        )

        assert ack["result"] == "processed"
        call = await h.store.find_by_provider_id("pid-7")
        assert call.id == "call-1"
        assert call.status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_plain_client_state(self, make_harness, seed_call):
        h = make_harness()
        await seed_call(provider_call_id=None)

        ack = await h.dispatcher.handle(telnyx_event("call.initiated", call_control_id=None, client_state="call-1"))

        assert ack["call_id"] == "call-1"

    @pytest.mark.asyncio
    async def test_existing_provider_id_not_overwritten(self, make_harness, seed_call):
        h = make_harness()
        await seed_call(provider_call_id="pid-1")

        await h.dispatcher.handle(
            telnyx_event("call.initiated", call_control_id="pid-other", client_state=encode_client_state("call-1"))
        )

        assert (await h.store.find_by_id("call-1")).provider_call_id == "pid-1"


class TestDuplicatesAndPreconditions:

    @pytest.mark.asyncio
    async def test_duplicate_event_id_dropped(self, make_harness, seed_call):
        h = make_harness(answer_delay=0.5)
        await seed_call()

        first = await h.dispatcher.handle(telnyx_event("call.answered", event_id="evt-1"))
        second = await h.dispatcher.handle(telnyx_event("call.answered", event_id="evt-1"))

        assert first["result"] == "processed"
        assert second["result"] == "duplicate"
        assert h.deferred.pending("call-1") == 1

    @pytest.mark.asyncio
    async def test_dedupe_window_is_bounded(self, make_harness, seed_call):
        h = make_harness()
        h.dispatcher._dedupe_size = 2
        await seed_call()

        for event_id in ("a", "b", "c"):
            await h.dispatcher.handle(telnyx_event("call.speak.started", event_id=event_id))

        again = await h.dispatcher.handle(telnyx_event("call.speak.started", event_id="a"))
        assert again["result"] == "ignored"

    @pytest.mark.asyncio
    async def test_replayed_answer_after_start_is_ignored(self, make_harness, seed_call):
        """Same event, new delivery id: the status precondition rejects it"""
        h = make_harness(answer_delay=0.5)
        await seed_call(status=CallStatus.IN_PROGRESS)

        ack = await h.dispatcher.handle(telnyx_event("call.answered", event_id="evt-2"))

        assert ack["result"] == "ignored"
        assert h.deferred.pending("call-1") == 0

    @pytest.mark.asyncio
    async def test_hangup_after_completion_is_ignored(self, make_harness, seed_call):
        h = make_harness()
        await seed_call(status=CallStatus.COMPLETED, outcome=CallOutcome.QUALIFIED)

        ack = await h.dispatcher.handle(telnyx_event("call.hangup", hangup_cause="normal_clearing"))

        assert ack["result"] == "ignored"
        assert (await h.store.find_by_id("call-1")).outcome == CallOutcome.QUALIFIED

    @pytest.mark.asyncio
    async def test_transcription_requires_in_progress(self, make_harness, seed_call):
        h = make_harness()
        await seed_call(status=CallStatus.RINGING)

        ack = await h.dispatcher.handle(
            telnyx_event("call.transcription", transcription_data={"transcript": "hello there", "is_final": True})
        )

        assert ack["result"] == "ignored"


class TestEventRouting:

    @pytest.mark.asyncio
    async def test_recording_saved(self, make_harness, seed_call):
        h = make_harness()
        await seed_call(status=CallStatus.COMPLETED)

        await h.dispatcher.handle(
            telnyx_event("call.recording.saved", recording_urls={"mp3": "https://rec.example/1.mp3"})
        )

        assert (await h.store.find_by_id("call-1")).recording_url == "https://rec.example/1.mp3"

    @pytest.mark.asyncio
    async def test_speak_failed_is_noted(self, make_harness, seed_call):
        h = make_harness()
        await seed_call(status=CallStatus.IN_PROGRESS)

        ack = await h.dispatcher.handle(telnyx_event("call.speak.failed", failure_reason="invalid ssml"))
        await settle()

        assert ack["result"] == "processed"
        assert "Playback failed: invalid ssml" in (await h.store.find_by_id("call-1")).notes

    @pytest.mark.asyncio
    async def test_hangup_before_answer_is_no_answer(self, make_harness, seed_call):
        h = make_harness()
        await seed_call(status=CallStatus.RINGING)

        await h.dispatcher.handle(telnyx_event("call.hangup", hangup_cause="timeout"))

        call = await h.store.find_by_id("call-1")
        assert call.status == CallStatus.COMPLETED
        assert call.outcome == CallOutcome.NO_ANSWER
        assert call.end_time is not None
