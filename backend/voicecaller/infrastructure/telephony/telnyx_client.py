"""
Telnyx Call Control Client
Thin async wrapper over the Telnyx v2 Call Control REST API
"""
import base64
import logging
import uuid
from typing import Optional, Dict, Any

import httpx

from voicecaller.core.errors import (
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from voicecaller.domain.interfaces.telephony_provider import TelephonyProvider
from voicecaller.utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)


class TelnyxCallControl(TelephonyProvider):
    """
    Telnyx Call Control v2 client.

    Every action is a POST to /calls/{call_control_id}/actions/{action}.
    Without an API key the client runs in simulation mode: actions are
    logged and place_call returns a synthetic call control id.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(self):
        self._client: Optional[httpx.AsyncClient] = None
        self._api_key: Optional[str] = None
        self._connection_id: Optional[str] = None
        self._from_number: Optional[str] = None
        self._api_base: str = "https://api.telnyx.com/v2"
        self._speak_timeout: float = 8.0
        self._playback_timeout: float = 10.0

    async def initialize(self, config: dict) -> None:
        """Initialize HTTP client; missing credentials enable simulation mode"""
        self._api_key = config.get("api_key")
        self._connection_id = config.get("connection_id")
        self._from_number = config.get("from_number")
        self._api_base = config.get("api_base", self._api_base)
        self._speak_timeout = config.get("speak_timeout", self._speak_timeout)
        self._playback_timeout = config.get("playback_timeout", self._playback_timeout)

        if not self._api_key:
            logger.warning("Telnyx credentials not configured - calls will be simulated")
            return

        self._client = httpx.AsyncClient(
            base_url=self._api_base,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.DEFAULT_TIMEOUT,
        )
        logger.info("Telnyx Call Control client initialized")

    @property
    def simulated(self) -> bool:
        return self._client is None

    async def place_call(
        self,
        to_number: str,
        from_number: Optional[str] = None,
        webhook_url: Optional[str] = None,
        client_state: Optional[str] = None
    ) -> str:
        to_number = normalize_phone_number(to_number)
        from_number = from_number or self._from_number

        if self.simulated:
            call_control_id = f"sim-{uuid.uuid4()}"
            logger.warning(f"Telnyx not configured - simulating call {call_control_id} to {to_number}")
            return call_control_id

        if not from_number:
            raise ProviderRejectedError("No caller ID configured", provider=self.name)

        body: Dict[str, Any] = {
            "to": to_number,
            "from": from_number,
            "connection_id": self._connection_id,
            "webhook_url": webhook_url,
            "record": "record-from-answer",
            "answering_machine_detection": "detect",
        }
        if client_state:
            body["client_state"] = client_state

        logger.info(f"Placing call: {from_number} -> {to_number}")
        data = await self._request("POST", "/calls", json=body)

        call_control_id = (data.get("data") or {}).get("call_control_id")
        if not call_control_id:
            raise ProviderRejectedError("No call_control_id returned from Telnyx", provider=self.name)

        logger.info(f"Call placed: call_control_id={call_control_id}")
        return call_control_id

    async def speak(self, provider_call_id: str, ssml: str, voice: str = "male", language: str = "en-US") -> None:
        await self._action(provider_call_id, "speak", {
            "payload": ssml,
            "payload_type": "ssml",
            "voice": voice,
            "language": language,
            "service_level": "premium",
        }, timeout=self._speak_timeout)

    async def play_audio(self, provider_call_id: str, audio: bytes, mime_type: str = "audio/mpeg") -> None:
        encoded = base64.b64encode(audio).decode("ascii")
        await self._action(provider_call_id, "playback_start", {
            "audio_url": f"data:{mime_type};base64,{encoded}",
        }, timeout=self._playback_timeout)

    async def start_streaming(
        self,
        provider_call_id: str,
        stream_url: Optional[str] = None,
        transcription: bool = False
    ) -> None:
        if transcription:
            await self._action(provider_call_id, "transcription_start", {
                "transcription_engine": "B",
                "language": "en",
                "transcription_tracks": "inbound",
            })
            return

        await self._action(provider_call_id, "streaming_start", {
            "stream_url": stream_url,
            "stream_track": "inbound_track",
        })

    async def stop_streaming(self, provider_call_id: str) -> None:
        await self._action(provider_call_id, "streaming_stop", {})

    async def stop_transcription(self, provider_call_id: str) -> None:
        await self._action(provider_call_id, "transcription_stop", {})

    async def start_recording(self, provider_call_id: str) -> None:
        await self._action(provider_call_id, "record_start", {"format": "mp3", "channels": "dual"})

    async def stop_recording(self, provider_call_id: str) -> None:
        await self._action(provider_call_id, "record_stop", {})

    async def hangup(self, provider_call_id: str) -> None:
        await self._action(provider_call_id, "hangup", {})
        logger.info(f"Call hung up: {provider_call_id}")

    async def get_call_status(self, provider_call_id: str) -> Dict:
        if self.simulated:
            return {"call_state": "simulated", "is_alive": True}

        try:
            data = await self._request("GET", f"/calls/{provider_call_id}")
        except ProviderRejectedError as e:
            if e.status_code == 404:
                return {"call_state": "not_found", "is_alive": False}
            raise

        call = data.get("data") or {}
        state = call.get("call_state") or call.get("state")
        if not state:
            state = "active" if call.get("is_alive") else "completed"
        return {"call_state": state, "is_alive": bool(call.get("is_alive", state == "active"))}

    async def _action(
        self,
        provider_call_id: str,
        action: str,
        body: Dict[str, Any],
        timeout: Optional[float] = None
    ) -> Dict:
        if self.simulated:
            logger.info(f"[simulated] {action} on {provider_call_id}")
            return {}

        return await self._request(
            "POST",
            f"/calls/{provider_call_id}/actions/{action}",
            json=body,
            timeout=timeout,
        )

    async def _request(self, method: str, path: str, json: Optional[Dict] = None, timeout: Optional[float] = None) -> Dict:
        """Issue a request and map failures onto the error taxonomy"""
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                timeout=timeout or self.DEFAULT_TIMEOUT,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Telnyx {path} timed out", provider=self.name) from e
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            detail = self._error_detail(e.response)
            if status_code < 500:
                raise ProviderRejectedError(
                    f"Telnyx rejected {path}: {detail}",
                    provider=self.name,
                    status_code=status_code,
                ) from e
            raise ProviderUnavailableError(f"Telnyx error {status_code}: {detail}", provider=self.name) from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Telnyx request failed: {e}", provider=self.name) from e

        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            errors = response.json().get("errors") or []
        except ValueError:
            return response.text[:200]
        if errors:
            return errors[0].get("detail") or errors[0].get("title") or str(errors[0])
        return response.reason_phrase

    async def cleanup(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def name(self) -> str:
        return "telnyx"
