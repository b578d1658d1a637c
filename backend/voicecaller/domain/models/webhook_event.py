"""
Telnyx webhook envelope

Telnyx posts: {"data": {"id", "event_type", "occurred_at", "payload": {...}}}
"""
import base64
import binascii
import json
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class WebhookEvent(BaseModel):
    """Parsed call-control or speech-stream event"""
    event_id: Optional[str] = None
    event_type: str
    occurred_at: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "WebhookEvent":
        """
        Parse a raw webhook body.

        Raises:
            ValueError: If the body has no event type
        """
        if not isinstance(body, dict):
            raise ValueError("webhook body must be a JSON object")

        data = body.get("data") if isinstance(body.get("data"), dict) else body
        event_type = data.get("event_type") or body.get("event_type") or body.get("event")
        if not event_type:
            raise ValueError("webhook body has no event_type")

        payload = data.get("payload")
        if not isinstance(payload, dict):
            payload = {}

        return cls(
            event_id=data.get("id"),
            event_type=str(event_type),
            occurred_at=data.get("occurred_at"),
            payload=payload,
        )

    @property
    def provider_call_id(self) -> Optional[str]:
        return self.payload.get("call_control_id")

    @property
    def client_state(self) -> Optional[str]:
        """Internal call id round-tripped through the provider"""
        return decode_client_state(self.payload.get("client_state"))

    @property
    def machine_detection_result(self) -> Optional[str]:
        return self.payload.get("result")

    @property
    def hangup_cause(self) -> Optional[str]:
        return self.payload.get("hangup_cause")

    @property
    def recording_url(self) -> Optional[str]:
        for key in ("recording_urls", "public_recording_urls"):
            urls = self.payload.get(key) or {}
            if urls.get("mp3"):
                return urls["mp3"]
        return None

    @property
    def transcript(self) -> Optional[Dict[str, Any]]:
        """
        Native transcription payload as {"text", "is_final", "confidence"}.

        Accepts both the stream.transcription shape and Telnyx's
        call.transcription (transcription_data) shape.
        """
        data = self.payload.get("transcription") or self.payload.get("transcription_data")
        if not isinstance(data, dict):
            return None

        text = data.get("text") or data.get("transcript") or ""
        return {
            "text": text,
            "is_final": bool(data.get("is_final", False)),
            "confidence": data.get("confidence"),
        }


def encode_client_state(call_id: str) -> str:
    """Telnyx requires client_state to be base64"""
    return base64.b64encode(json.dumps({"call_id": call_id}).encode("utf-8")).decode("ascii")


def decode_client_state(value: Optional[str]) -> Optional[str]:
    """Accepts encode_client_state output or a plain call id"""
    if not value:
        return None

    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
        data = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return value

    if isinstance(data, dict) and data.get("call_id"):
        return str(data["call_id"])
    return value
