"""
Twilio Programmable Voice adapter.

Calls are placed with a blocking ``httpx.Client`` against the REST API; the
inherited async ``initiate_call`` pushes that onto a worker thread. Voice
documents are TwiML built by ``carecall.telephony.twiml``.
"""

import hashlib
import hmac
import logging
from base64 import b64encode
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping

import httpx

from carecall.telephony import twiml
from carecall.telephony.config import TelephonyConfig, get_telephony_config
from carecall.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    CallStatus,
    StatusCallback,
    TelephonyProvider,
    WebhookParseError,
)

logger = logging.getLogger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"

# Progress events requested on every outbound call.
STATUS_EVENTS = ["initiated", "ringing", "answered", "completed"]


def _parse_twilio_time(value: str | None) -> datetime | None:
    """Twilio REST uses RFC 2822 dates; some callbacks send ISO 8601."""
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable Twilio timestamp", extra={"value": value})
        return None


def parse_status_payload(payload: Mapping[str, Any]) -> StatusCallback:
    """Parse a Twilio ``StatusCallback`` form.

    Raises:
        WebhookParseError: ``CallSid`` or ``CallStatus`` is missing or unknown.
    """
    call_sid = str(payload.get("CallSid") or "").strip()
    raw_status = str(payload.get("CallStatus") or "").strip().lower()
    if not call_sid:
        raise WebhookParseError("Status callback without CallSid", "MISSING_CALL_SID", dict(payload))
    if not raw_status:
        raise WebhookParseError("Status callback without CallStatus", "MISSING_CALL_STATUS", dict(payload))

    status = CallStatus.from_provider(raw_status)
    if status is None:
        raise WebhookParseError(f"Unknown CallStatus: {raw_status}", "UNKNOWN_CALL_STATUS", dict(payload))

    try:
        duration = int(payload["CallDuration"]) if payload.get("CallDuration") else None
    except (TypeError, ValueError):
        duration = None

    return StatusCallback(
        provider_call_id=call_sid,
        status=status,
        raw_status=raw_status,
        timestamp=_parse_twilio_time(payload.get("Timestamp")) or datetime.now(timezone.utc),
        duration_seconds=duration,
        error_code=payload.get("ErrorCode") if status == CallStatus.FAILED else None,
        raw_payload=dict(payload),
    )


def compute_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """``X-Twilio-Signature`` for a form POST: HMAC-SHA1 over the URL plus sorted params."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return b64encode(digest).decode("ascii")


class TwilioAdapter(twiml.TwimlRendering, TelephonyProvider):
    """Places calls through the Twilio REST API and speaks TwiML."""

    def __init__(
        self,
        config: TelephonyConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config or get_telephony_config()
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def _calls_url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self._config.twilio_account_sid}/Calls.json"

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(30.0))
        return self._client

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        form = {
            "To": request.to,
            "From": request.from_number,
            "Url": request.voice_url,
            "Method": "POST",
            "StatusCallback": request.status_callback_url,
            "StatusCallbackEvent": STATUS_EVENTS,
            "StatusCallbackMethod": "POST",
            "Timeout": str(self._config.call_timeout_seconds),
        }
        logger.info("Placing Twilio call", extra={"to": request.to, "record_id": request.record_id})

        try:
            response = self._http().post(
                self._calls_url,
                data=form,
                auth=(self._config.twilio_account_sid, self._config.twilio_auth_token),
            )
        except httpx.HTTPError as e:
            logger.exception("Twilio unreachable", extra={"record_id": request.record_id})
            raise CallInitiationError(f"HTTP error: {e}", "HTTP_ERROR") from e

        if response.is_error:
            self._raise_call_error(response, request.record_id)

        body = response.json()
        return CallInitiationResponse(
            provider_call_id=body["sid"],
            status=CallStatus.from_provider(body.get("status") or "") or CallStatus.QUEUED,
            created_at=_parse_twilio_time(body.get("date_created")) or datetime.now(timezone.utc),
            raw_response=body,
        )

    def _raise_call_error(self, response: httpx.Response, record_id: int) -> None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        logger.error(
            "Twilio rejected call",
            extra={"status_code": response.status_code, "record_id": record_id, "error": body},
        )
        raise CallInitiationError(
            body.get("message") or f"Twilio returned {response.status_code}",
            str(body.get("code") or response.status_code),
            body,
        )

    def parse_status_callback(self, payload: dict[str, Any]) -> StatusCallback:
        return parse_status_payload(payload)

    def validate_webhook_signature(self, params: dict[str, str], signature: str, url: str) -> bool:
        token = self._config.twilio_auth_token
        if not token:
            logger.warning("Twilio auth token not set; accepting unsigned webhook")
            return True
        return hmac.compare_digest(compute_signature(token, url, params), signature or "")
