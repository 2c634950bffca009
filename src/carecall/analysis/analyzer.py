"""
Post-call analysis.

After a call is finalized the orchestrator hands the member id and the call's
request time to a ``PostCallAnalyzer``. The bundled implementation asks the
LLM to classify the member's wellness from a trailing window of transcripts.
"""

from datetime import datetime, timedelta
from typing import Protocol

from carecall.calls.repository import CallRecordRepository
from carecall.dialogue.llm.gateway import LLMGateway
from carecall.dialogue.llm.errors import LLMError
from carecall.dialogue.llm.models import ChatMessage, ChatRequest, MessageRole
from carecall.dialogue.llm.prompts import MEMBER_STATUS_SYSTEM_PROMPT
from carecall.dialogue.models import parse_transcript
from carecall.members.models import StatusTag
from carecall.members.repository import MemberRepository
from carecall.shared.database import DatabaseManager
from carecall.shared.logging import get_logger

logger = get_logger(__name__)


class PostCallAnalyzer(Protocol):
    async def analyze(self, member_id: str, anchor: datetime) -> None:
        """Best-effort enrichment; failures must not affect the call record."""
        ...


class MemberStatusAnalyzer:
    """Tags a member as 안전 / 주의 / 확인 필요 from recent conversations."""

    def __init__(
        self,
        database: DatabaseManager,
        gateway: LLMGateway,
        window_days: int = 7,
    ) -> None:
        self._db = database
        self._gateway = gateway
        self._window = timedelta(days=window_days)

    async def analyze(self, member_id: str, anchor: datetime) -> None:
        start = anchor - self._window

        async with self._db.session() as db:
            records = await CallRecordRepository(db).list_for_member_between(member_id, start, anchor)
            latest_id = records[-1].id if records else None
            conversation = self._aggregate(records)

        if not conversation:
            logger.info(
                "No conversation data in window; defaulting status",
                extra={"member_id": member_id, "window_start": start, "window_end": anchor},
            )
            tag = StatusTag.SAFE
        else:
            tag = await self._classify(member_id, conversation)

        async with self._db.session() as db:
            if not await MemberRepository(db).update_status_tag(member_id, tag):
                logger.warning("Member not found for status update", extra={"member_id": member_id})
                return
            if latest_id is not None:
                await CallRecordRepository(db).set_result_tags(
                    latest_id, {"status_tag": tag, "window_days": self._window.days}
                )

        logger.info("Member status updated", extra={"member_id": member_id, "status_tag": tag})

    def _aggregate(self, records) -> str:
        lines: list[str] = []
        for record in records:
            if not record.transcript:
                continue
            try:
                turns = parse_transcript(record.transcript)
            except ValueError:
                # Also covers the serialization-error payload, which is a dict.
                logger.warning("Skipping unparseable transcript", extra={"record_id": record.id})
                continue
            lines.extend(f"{t.speaker.value}: {t.text}" for t in turns)
        return "\n".join(lines)

    async def _classify(self, member_id: str, conversation: str) -> str:
        request = ChatRequest(
            messages=[
                ChatMessage(role=MessageRole.SYSTEM, content=MEMBER_STATUS_SYSTEM_PROMPT),
                ChatMessage(role=MessageRole.USER, content=conversation),
            ],
            temperature=0.0,
            max_tokens=10,
            trace_id=member_id,
        )
        try:
            response = await self._gateway.chat_completion(request)
        except LLMError:
            logger.exception("Status classification failed", extra={"member_id": member_id})
            return StatusTag.NEEDS_CHECK

        answer = response.content.strip().strip('"').strip()
        if answer in StatusTag.ALL:
            return answer
        logger.warning(
            "Unexpected status classification; defaulting",
            extra={"member_id": member_id, "answer": answer},
        )
        return StatusTag.NEEDS_CHECK
