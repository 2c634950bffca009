"""
What the rest of the application needs from a telephony provider.

A provider places outbound calls, parses status callbacks and renders the
voice documents the conversation webhooks answer with.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import anyio


class CallStatus(str, Enum):
    """Provider-neutral call progress."""

    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no_answer"
    FAILED = "failed"
    CANCELED = "canceled"

    @classmethod
    def from_provider(cls, raw: str) -> "CallStatus | None":
        """Map a provider spelling such as ``no-answer`` or ``in-progress``."""
        try:
            return cls(raw.strip().lower().replace("-", "_"))
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        """The call is over; no further voice webhooks will arrive."""
        return self in {
            CallStatus.COMPLETED,
            CallStatus.BUSY,
            CallStatus.NO_ANSWER,
            CallStatus.FAILED,
            CallStatus.CANCELED,
        }


@dataclass(frozen=True)
class CallInitiationRequest:
    to: str
    from_number: str
    voice_url: str
    status_callback_url: str
    record_id: int
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallInitiationResponse:
    provider_call_id: str
    status: CallStatus
    created_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StatusCallback:
    provider_call_id: str
    status: CallStatus
    # As sent by the provider, e.g. "no-answer".
    raw_status: str
    timestamp: datetime
    duration_seconds: int | None = None
    error_code: str | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


class TelephonyProviderError(Exception):
    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class CallInitiationError(TelephonyProviderError):
    """The provider could not place the call."""


class WebhookParseError(TelephonyProviderError):
    """A webhook payload is missing fields or carries unknown values."""


class TelephonyProvider(ABC):
    """Base class for provider adapters.

    Subclasses implement the blocking ``initiate_call_sync``; callers await
    ``initiate_call``, which runs it on a worker thread.
    """

    async def initiate_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        return await anyio.to_thread.run_sync(self.initiate_call_sync, request)

    @abstractmethod
    def initiate_call_sync(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Place the call.

        Raises:
            CallInitiationError: rejected by the provider or provider unreachable.
        """

    @abstractmethod
    def parse_status_callback(self, payload: dict[str, Any]) -> StatusCallback:
        """Raises ``WebhookParseError`` for malformed payloads."""

    @abstractmethod
    def render_continuation(self, message: str, next_action_url: str) -> str:
        """Speak ``message``, then post the caller's answer to ``next_action_url``."""

    @abstractmethod
    def render_termination(self, message: str) -> str:
        """Speak ``message`` and hang up."""

    @abstractmethod
    def validate_webhook_signature(self, params: dict[str, str], signature: str, url: str) -> bool:
        ...
