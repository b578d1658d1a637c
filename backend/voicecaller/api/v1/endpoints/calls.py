"""
Calls API Endpoints
Placing, inspecting and ending calls, plus the call-audio relay
"""
import base64
import binascii
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field, field_validator

from voicecaller.api.v1.dependencies import get_orchestrator, get_services
from voicecaller.core.container import CallServices
from voicecaller.core.validation import ProviderValidator
from voicecaller.domain.models.call import Call, CallStatus
from voicecaller.domain.services.call_orchestrator import CallOrchestrator
from voicecaller.utils.phone import is_valid_phone_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["calls"])


class InitiateCallRequest(BaseModel):
    """Request to place one outbound call"""
    phone_number: str = Field(..., description="Destination number, E.164 preferred")
    lead_name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("phone_number")
    @classmethod
    def validate_phone_number(cls, value: str) -> str:
        if not is_valid_phone_number(value):
            raise ValueError("phone_number must be a valid E.164 number")
        return value


class HangupResponse(BaseModel):
    call_id: str
    status: CallStatus
    changed: bool
    reason: Optional[str] = None


class AudioFrameResponse(BaseModel):
    status: str = "ok"
    forwarded: bool = False


@router.post("/initiate", response_model=Call, status_code=status.HTTP_201_CREATED)
async def initiate_call(
    request: InitiateCallRequest,
    orchestrator: CallOrchestrator = Depends(get_orchestrator)
):
    """
    Create a call record and place the call.

    A call the provider refuses is still recorded (status failed, with
    the reason in notes) and reported as 502.
    """
    call = await orchestrator.initiate_call(request.phone_number, request.lead_name)

    if call.status == CallStatus.FAILED:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "call_id": call.id,
                "reason": call.notes[-1] if call.notes else "call could not be placed",
            },
        )
    return call


@router.get("/config-status")
async def config_status(services: CallServices = Depends(get_services)) -> Dict[str, Any]:
    """Which providers are configured and which subsystems run on fallbacks"""
    validator = ProviderValidator(services.settings)
    all_valid, _ = validator.validate_all()

    return {
        "valid": all_valid,
        "providers": {
            "telephony": {
                "name": services.telephony.name,
                "simulated": getattr(services.telephony, "simulated", False),
            },
            "stt": services.stt.name if services.stt else None,
            "stt_fallback": services.stt_fallback.name if services.stt_fallback else None,
            "tts": services.tts.name if services.tts else None,
            "llm": services.llm.name if services.llm else None,
        },
        "checks": validator.as_status(),
    }


@router.get("/{call_id}", response_model=Call)
async def get_call(call_id: str, services: CallServices = Depends(get_services)):
    call = await services.store.find_by_id(call_id)
    if call is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")
    return call


@router.post("/{call_id}/hangup", response_model=HangupResponse)
async def hangup_call(call_id: str, orchestrator: CallOrchestrator = Depends(get_orchestrator)):
    """End a live call; ending an already-ended call is a no-op"""
    call = await orchestrator.store.find_by_id(call_id)
    if call is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found")

    result = await orchestrator.hangup_call(call_id)
    final = result.call or call
    return HangupResponse(call_id=call_id, status=final.status, changed=result.changed, reason=result.reason)


# Call audio relay

def _decode_payload(payload: Optional[str]) -> Optional[bytes]:
    if not payload:
        return None
    try:
        return base64.b64decode(payload)
    except (binascii.Error, ValueError):
        return None


@router.post("/audio-stream", response_model=AudioFrameResponse)
async def audio_stream_frame(request: Request, services: CallServices = Depends(get_services)):
    """
    Accept one media frame: {"event": "media", "media": {"call_control_id", "payload"}}.

    Frames for calls with no listening session are dropped.
    """
    try:
        body = await request.json()
    except ValueError:
        return AudioFrameResponse(status="invalid")

    if not isinstance(body, dict) or body.get("event") != "media":
        return AudioFrameResponse()

    media = body.get("media") or {}
    provider_call_id = media.get("call_control_id") or body.get("call_control_id")
    audio = _decode_payload(media.get("payload"))
    if not provider_call_id or audio is None:
        return AudioFrameResponse(status="invalid")

    forwarded = await services.recognition.feed_audio(provider_call_id, audio)
    return AudioFrameResponse(forwarded=forwarded)


@router.websocket("/audio-stream/ws")
async def audio_stream_socket(websocket: WebSocket):
    """
    Telnyx media stream: "start" names the call, "media" frames carry
    base64 mu-law audio, "stop" ends the stream.
    """
    await websocket.accept()
    services: Optional[CallServices] = getattr(websocket.app.state, "services", None)
    if services is None:
        await websocket.close(code=1013)
        return

    provider_call_id: Optional[str] = None
    frames = 0

    try:
        while True:
            message = await websocket.receive_text()
            try:
                data = json.loads(message)
            except ValueError:
                logger.debug("Ignoring non-JSON media stream message")
                continue

            event = data.get("event")
            if event == "start":
                start = data.get("start") or {}
                provider_call_id = start.get("call_control_id") or data.get("call_control_id")
                logger.info(f"Media stream started for {provider_call_id}")

            elif event == "media":
                media = data.get("media") or {}
                if media.get("track") not in (None, "inbound"):
                    continue
                pid = media.get("call_control_id") or provider_call_id
                audio = _decode_payload(media.get("payload"))
                if pid and audio:
                    if await services.recognition.feed_audio(pid, audio):
                        frames += 1

            elif event == "stop":
                logger.info(f"Media stream stopped for {provider_call_id} ({frames} frames forwarded)")
                break

    except WebSocketDisconnect:
        logger.info(f"Media stream disconnected for {provider_call_id} ({frames} frames forwarded)")
