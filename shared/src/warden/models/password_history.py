"""Previous password hashes, kept to refuse reuse."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, UTCDateTime


class PasswordHistoryEntry(Base):
    __tablename__ = "password_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id: Mapped[str] = mapped_column(Text, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("idx_password_history_principal_time", "principal_id", "created_at"),)
