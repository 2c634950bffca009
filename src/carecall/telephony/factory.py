"""
Selects the telephony adapter named by ``TelephonyConfig.provider_type``.
"""

import logging

from carecall.telephony.config import ProviderType, TelephonyConfig
from carecall.telephony.interface import TelephonyProvider
from carecall.telephony.mock_adapter import MockTelephonyAdapter
from carecall.telephony.twilio_adapter import TwilioAdapter

logger = logging.getLogger(__name__)

_ADAPTERS: dict[ProviderType, type[TelephonyProvider]] = {
    ProviderType.TWILIO: TwilioAdapter,
    ProviderType.MOCK: MockTelephonyAdapter,
}


def _redact(secret: str) -> str:
    return f"{secret[:6]}***" if len(secret) > 6 else "*" * len(secret)


def create_telephony_provider(cfg: TelephonyConfig) -> TelephonyProvider:
    try:
        adapter = _ADAPTERS[cfg.provider_type]
    except KeyError:
        raise ValueError(f"Unsupported telephony provider_type: {cfg.provider_type}") from None

    logger.info(
        "Telephony provider selected",
        extra={
            "provider_type": cfg.provider_type.value,
            "account_sid": _redact(cfg.twilio_account_sid),
            "from_number": cfg.twilio_from_number,
            "webhook_base_url": cfg.webhook_base_url,
        },
    )
    if cfg.provider_type == ProviderType.TWILIO and not cfg.twilio_from_number:
        logger.warning("TELEPHONY_TWILIO_FROM_NUMBER is empty; Twilio will reject placements")
    return adapter(cfg)
