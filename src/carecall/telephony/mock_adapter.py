"""
In-memory provider for local runs and tests.

Placed calls are recorded instead of dialled. Status callbacks and voice
documents use the Twilio formats so the webhooks can be exercised by hand.
"""

import itertools
import logging
from datetime import datetime, timezone
from typing import Any

from carecall.telephony.config import TelephonyConfig
from carecall.telephony.interface import (
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    CallStatus,
    StatusCallback,
    TelephonyProvider,
)
from carecall.telephony.twilio_adapter import parse_status_payload
from carecall.telephony.twiml import TwimlRendering

logger = logging.getLogger(__name__)


class MockTelephonyAdapter(TwimlRendering, TelephonyProvider):
    def __init__(self, config: TelephonyConfig | None = None) -> None:
        self._config = config or TelephonyConfig()
        self.reset()

    def reset(self) -> None:
        self._placed: list[CallInitiationRequest] = []
        self._ids = itertools.count(1)
        self._failure: tuple[str, str] | None = None
        self._failing_numbers: frozenset[str] = frozenset()

    def configure_failure(
        self,
        should_fail: bool = True,
        error_message: str = "Mock failure",
        error_code: str = "MOCK_ERROR",
        only_numbers: set[str] | None = None,
    ) -> None:
        """Make later placements raise ``CallInitiationError``.

        With ``only_numbers`` only those destinations fail.
        """
        self._failure = (error_message, error_code) if should_fail else None
        self._failing_numbers = frozenset(only_numbers or ())

    @property
    def calls(self) -> list[CallInitiationRequest]:
        return list(self._placed)

    def get_last_call(self) -> CallInitiationRequest | None:
        return self._placed[-1] if self._placed else None

    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        failing = not self._failing_numbers or request.to in self._failing_numbers
        if self._failure is not None and failing:
            message, code = self._failure
            logger.info("Mock placement failure", extra={"to": request.to, "record_id": request.record_id})
            raise CallInitiationError(message, code, {"to": request.to})

        self._placed.append(request)
        call_id = f"MOCK_CALL_{next(self._ids):06d}"
        logger.info("Mock call placed", extra={"to": request.to, "provider_call_id": call_id})
        return CallInitiationResponse(
            provider_call_id=call_id,
            status=CallStatus.QUEUED,
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "record_id": request.record_id},
        )

    def parse_status_callback(self, payload: dict[str, Any]) -> StatusCallback:
        return parse_status_payload(payload)

    def validate_webhook_signature(self, params: dict[str, str], signature: str, url: str) -> bool:
        return True
