"""
Outbound call placement.
"""

import re
from dataclasses import dataclass

from carecall.calls.models import CallKind
from carecall.calls.repository import CallRecordRepository
from carecall.members.repository import MemberRepository
from carecall.shared.database import DatabaseManager
from carecall.shared.exceptions import NotFoundError
from carecall.shared.logging import get_logger
from carecall.telephony.config import STATUS_CALLBACK_PATH, VOICE_START_PATH, TelephonyConfig
from carecall.telephony.interface import (
    CallInitiationRequest,
    TelephonyProvider,
    TelephonyProviderError,
)

logger = get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_number(raw: str, country_prefix: str = "+82") -> str:
    """Strip formatting and swap a leading trunk '0' for the country prefix.

    >>> normalize_phone_number("010-1234-5678")
    '+821012345678'
    """
    digits = _NON_DIGITS.sub("", raw)
    if digits.startswith("0"):
        return country_prefix + digits[1:]
    return digits


@dataclass(frozen=True)
class DispatchResult:
    record_id: int
    provider_call_id: str
    to: str


class CallDispatcher:
    """Creates the call record and asks the provider to place the call."""

    def __init__(
        self,
        database: DatabaseManager,
        provider: TelephonyProvider,
        telephony_config: TelephonyConfig,
        country_prefix: str = "+82",
    ) -> None:
        self._db = database
        self._provider = provider
        self._telephony_config = telephony_config
        self._country_prefix = country_prefix

    async def dispatch(
        self,
        member_id: str,
        phone_number: str,
        kind: CallKind,
    ) -> DispatchResult:
        """Place one call.

        The record is committed as QUEUED before the provider is contacted.
        On placement failure it is marked FAILED and the provider error is
        re-raised.

        Raises:
            TelephonyProviderError: the provider refused or could not be reached.
        """
        async with self._db.session() as db:
            record = await CallRecordRepository(db).create(member_id, kind)
            record_id = record.id

        to = normalize_phone_number(phone_number, self._country_prefix)
        request = CallInitiationRequest(
            to=to,
            from_number=self._telephony_config.twilio_from_number,
            voice_url=self._telephony_config.get_webhook_url(VOICE_START_PATH),
            status_callback_url=self._telephony_config.get_webhook_url(STATUS_CALLBACK_PATH),
            record_id=record_id,
            metadata={"member_id": member_id, "call_kind": kind.value},
        )

        try:
            response = await self._provider.initiate_call(request)
        except TelephonyProviderError as e:
            logger.error(
                "Call placement failed",
                extra={
                    "record_id": record_id,
                    "member_id": member_id,
                    "error_code": e.error_code,
                    "error": str(e),
                },
            )
            async with self._db.session() as db:
                await CallRecordRepository(db).mark_failed(record_id)
            raise

        async with self._db.session() as db:
            await CallRecordRepository(db).attach_provider_call_id(record_id, response.provider_call_id)

        logger.info(
            "Call placed",
            extra={
                "record_id": record_id,
                "member_id": member_id,
                "provider_call_id": response.provider_call_id,
                "call_kind": kind.value,
            },
        )
        return DispatchResult(record_id=record_id, provider_call_id=response.provider_call_id, to=to)

    async def dispatch_manual(self, member_id: str) -> DispatchResult:
        """Call a member right now.

        Raises:
            NotFoundError: no such member.
        """
        async with self._db.session() as db:
            member = await MemberRepository(db).get_by_id(member_id)
            if member is None:
                raise NotFoundError(f"Member not found: {member_id}", {"member_id": member_id})
            phone_number = member.phone_number
        return await self.dispatch(member_id, phone_number, CallKind.MANUAL)
