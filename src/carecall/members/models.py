"""
SQLAlchemy model for members (the people we call).
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from carecall.shared.database import Base


class StatusTag:
    """Wellness classification produced by post-call analysis."""

    SAFE = "안전"
    CAUTION = "주의"
    NEEDS_CHECK = "확인 필요"

    ALL = frozenset({SAFE, CAUTION, NEEDS_CHECK})


class Member(Base):
    """A person enrolled for wellness-check calls."""

    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(10), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone_number: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
    )
    status_tag: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, status_tag={self.status_tag})>"
