"""
SQLAlchemy model for recurring call schedules.
"""

from datetime import date, time
from enum import Enum

from sqlalchemy import Boolean, Date, Enum as SQLEnum, ForeignKey, Integer, String, Time
from sqlalchemy.orm import Mapped, mapped_column

from carecall.shared.database import Base


class Frequency(str, Enum):
    """How often a schedule repeats."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Schedule(Base):
    """A recurring instruction to call a member at a time of day.

    No "last fired" state is kept: whether a schedule is due depends only on
    its fields and the current minute.
    """

    __tablename__ = "call_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[str] = mapped_column(
        String(10),
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(
        SQLEnum(Frequency, name="schedule_frequency"),
        nullable=False,
    )
    call_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<Schedule(id={self.id}, member_id={self.member_id}, "
            f"frequency={self.frequency}, call_time={self.call_time})>"
        )
