"""
Repository for schedule reads.
"""

from dataclasses import dataclass
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carecall.members.models import Member
from carecall.schedules.models import Frequency, Schedule


@dataclass(frozen=True)
class ScheduleSnapshot:
    """Detached copy of an active schedule plus the number to dial."""

    schedule_id: int
    member_id: str
    phone_number: str
    start_date: date
    frequency: Frequency
    call_time: time


class ScheduleRepository:
    """Repository for schedule database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        member_id: str,
        start_date: date,
        frequency: Frequency,
        call_time: time,
        is_active: bool = True,
    ) -> Schedule:
        schedule = Schedule(
            member_id=member_id,
            start_date=start_date,
            frequency=frequency,
            call_time=call_time,
            is_active=is_active,
        )
        self._session.add(schedule)
        await self._session.flush()
        return schedule

    async def list_active_snapshots(self) -> list[ScheduleSnapshot]:
        """Load every active schedule joined with its member's phone number."""
        stmt = (
            select(
                Schedule.id,
                Schedule.member_id,
                Member.phone_number,
                Schedule.start_date,
                Schedule.frequency,
                Schedule.call_time,
            )
            .join(Member, Member.id == Schedule.member_id)
            .where(Schedule.is_active.is_(True))
            .order_by(Schedule.id)
        )
        rows = (await self._session.execute(stmt)).all()
        return [
            ScheduleSnapshot(
                schedule_id=row[0],
                member_id=row[1],
                phone_number=row[2],
                start_date=row[3],
                frequency=row[4],
                call_time=row[5],
            )
            for row in rows
        ]
