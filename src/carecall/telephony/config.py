"""
Telephony provider configuration.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

WEBHOOK_PREFIX = "/webhooks/telephony"
VOICE_START_PATH = f"{WEBHOOK_PREFIX}/voice/start"
VOICE_RESPOND_PATH = f"{WEBHOOK_PREFIX}/voice/respond"
STATUS_CALLBACK_PATH = f"{WEBHOOK_PREFIX}/status"


class ProviderType(str, Enum):
    """Supported telephony provider types."""

    TWILIO = "twilio"
    MOCK = "mock"


class TelephonyConfig(BaseSettings):
    """Telephony provider configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="TELEPHONY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.TWILIO)

    twilio_account_sid: str = Field(default="")
    twilio_auth_token: str = Field(default="")
    twilio_from_number: str = Field(default="")

    # Public base URL Twilio uses for the voice and status webhooks
    webhook_base_url: str = Field(default="http://localhost:8000")
    validate_signatures: bool = Field(
        default=False,
        description="Reject webhooks whose X-Twilio-Signature does not verify.",
    )

    call_timeout_seconds: int = Field(default=60, ge=10, le=300)

    # Spoken rendering
    voice: str = Field(default="Polly.Seoyeon")
    language: str = Field(default="ko-KR")
    speech_timeout: str = Field(
        default="1",
        description="Seconds of silence that end a spoken answer, or 'auto'.",
    )
    gather_timeout_seconds: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Seconds to wait for speech to start before posting an empty result.",
    )

    def get_webhook_url(self, path: str = STATUS_CALLBACK_PATH) -> str:
        base = self.webhook_base_url.rstrip("/")
        return f"{base}{path}"


def get_telephony_config() -> TelephonyConfig:
    return TelephonyConfig()
