"""
Webhooks API Endpoints
Handles incoming call-control and speech-stream webhooks from Telnyx

Every webhook is acknowledged with 200, whatever happened while
handling it; Telnyx retries anything else.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from voicecaller.api.v1.dependencies import get_dispatcher
from voicecaller.domain.services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _read_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as e:
        logger.warning(f"Webhook body is not JSON: {e}")
        return None


@router.post("/telnyx")
async def telnyx_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> Dict[str, Any]:
    """
    Handle Telnyx Call Control events.

    call.initiated, call.answered, call.speak.ended, call.playback.ended,
    call.hangup, call.recording.saved, call.machine.detection.ended and
    streaming.failed drive the call; anything else is acknowledged.
    """
    body = await _read_body(request)
    if body is None:
        return {"status": "ok", "result": "invalid"}
    return await dispatcher.handle(body)


@router.post("/telnyx/speech-stream")
async def telnyx_speech_stream_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher)
) -> Dict[str, Any]:
    """Handle Telnyx native transcription events (fallback recognizer)"""
    body = await _read_body(request)
    if body is None:
        return {"status": "ok", "result": "invalid"}
    return await dispatcher.handle(body)
