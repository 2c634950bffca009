"""
Repository for call record database operations.
"""

from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carecall.calls.models import CallKind, CallRecord, CallRecordStatus


class CallRecordRepository:
    """Repository for call record database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def create(
        self,
        member_id: str,
        call_kind: CallKind,
        requested_at: datetime | None = None,
    ) -> CallRecord:
        """Create a new call record in QUEUED status.

        Args:
            member_id: Member being called.
            call_kind: MANUAL or AUTO.
            requested_at: Creation time override (defaults to now, UTC).

        Returns:
            Created CallRecord instance.
        """
        record = CallRecord(
            member_id=member_id,
            call_kind=call_kind,
            status=CallRecordStatus.QUEUED,
            requested_at=requested_at or datetime.now(timezone.utc),
        )
        self._session.add(record)
        await self._session.flush()
        await self._session.refresh(record)
        return record

    async def get_by_id(self, record_id: int) -> CallRecord | None:
        stmt = select(CallRecord).where(CallRecord.id == record_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_provider_call_id(self, provider_call_id: str) -> CallRecord | None:
        """Get call record by provider call identifier (e.g., Twilio CallSid)."""
        stmt = select(CallRecord).where(CallRecord.provider_call_id == provider_call_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def attach_provider_call_id(self, record_id: int, provider_call_id: str) -> None:
        stmt = (
            update(CallRecord)
            .where(CallRecord.id == record_id)
            .values(provider_call_id=provider_call_id)
        )
        await self._session.execute(stmt)

    async def mark_failed(self, record_id: int, only_if_queued: bool = False) -> bool:
        """Set status FAILED on a record that has no transcript yet.

        Args:
            record_id: Call record id.
            only_if_queued: Leave records that already left QUEUED untouched.

        Returns:
            True if a row was updated.
        """
        stmt = (
            update(CallRecord)
            .where(CallRecord.id == record_id)
            .where(CallRecord.transcript.is_(None))
        )
        if only_if_queued:
            stmt = stmt.where(CallRecord.status == CallRecordStatus.QUEUED)
        result = await self._session.execute(stmt.values(status=CallRecordStatus.FAILED))
        return (result.rowcount or 0) > 0

    async def write_final(
        self,
        record_id: int,
        transcript: str,
        status: CallRecordStatus,
    ) -> bool:
        """Persist the final transcript and status.

        The update is conditional on ``transcript IS NULL`` so two concurrent
        finalizers cannot both write.

        Returns:
            True if this call wrote the transcript.
        """
        stmt = (
            update(CallRecord)
            .where(CallRecord.id == record_id)
            .where(CallRecord.transcript.is_(None))
            .values(transcript=transcript, status=status)
        )
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0

    async def set_result_tags(self, record_id: int, result_tags: dict[str, Any]) -> None:
        stmt = (
            update(CallRecord)
            .where(CallRecord.id == record_id)
            .values(result_tags=result_tags)
        )
        await self._session.execute(stmt)

    async def list_for_member_between(
        self,
        member_id: str,
        start: datetime,
        end: datetime,
    ) -> Sequence[CallRecord]:
        """Records for a member requested within ``[start, end]``, oldest first."""
        stmt = (
            select(CallRecord)
            .where(CallRecord.member_id == member_id)
            .where(CallRecord.requested_at >= start)
            .where(CallRecord.requested_at <= end)
            .order_by(CallRecord.requested_at, CallRecord.id)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()
