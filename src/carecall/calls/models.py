"""
SQLAlchemy model for call records.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from carecall.shared.database import Base


class CallKind(str, Enum):
    """Who asked for the call."""

    MANUAL = "manual"
    AUTO = "auto"


class CallRecordStatus(str, Enum):
    """Lifecycle status of a call record."""

    QUEUED = "queued"
    COMPLETED = "completed"
    FAILED = "failed"


class CallRecord(Base):
    """Persistent record of one outbound call.

    ``transcript`` is written at most once, when the conversation is finalized.
    """

    __tablename__ = "call_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[str] = mapped_column(
        String(10),
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    call_kind: Mapped[CallKind] = mapped_column(
        SQLEnum(CallKind, name="call_kind"),
        nullable=False,
    )
    status: Mapped[CallRecordStatus] = mapped_column(
        SQLEnum(CallRecordStatus, name="call_record_status"),
        nullable=False,
        default=CallRecordStatus.QUEUED,
    )
    provider_call_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        unique=True,
    )
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    result_tags: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<CallRecord(id={self.id}, member_id={self.member_id}, "
            f"status={self.status}, provider_call_id={self.provider_call_id})>"
        )
