"""
Repository for member database operations.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carecall.members.models import Member


class MemberRepository:
    """Repository for member database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        member_id: str,
        phone_number: str,
        name: str | None = None,
    ) -> Member:
        member = Member(id=member_id, phone_number=phone_number, name=name)
        self._session.add(member)
        await self._session.flush()
        return member

    async def get_by_id(self, member_id: str) -> Member | None:
        stmt = select(Member).where(Member.id == member_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_status_tag(self, member_id: str, status_tag: str) -> bool:
        """Set the member's wellness tag.

        Returns:
            True if the member exists and was updated.
        """
        stmt = update(Member).where(Member.id == member_id).values(status_tag=status_tag)
        result = await self._session.execute(stmt)
        return (result.rowcount or 0) > 0
