"""Account lockout records - deactivated, never deleted."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, UTCDateTime, text_enum
from warden.models.enums import LockoutReason


class AccountLockout(Base):
    __tablename__ = "account_lockouts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[LockoutReason] = mapped_column(text_enum(LockoutReason), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )
    # NULL when permanent.
    unlocks_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    is_permanent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    attempts_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unlock_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    issuing_admin: Mapped[str | None] = mapped_column(Text)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index(
            "uq_account_lockouts_active_principal",
            "principal_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_account_lockouts_principal_time", "principal_id", "locked_at"),
    )

    def is_effective(self, now: datetime) -> bool:
        """Active means permanent, or still before the unlock time."""
        if not self.is_active:
            return False
        if self.is_permanent:
            return True
        return self.unlocks_at is not None and now < self.unlocks_at
