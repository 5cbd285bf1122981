"""Time-bounded, device-scoped grants of access to a protected resource."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Index, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, UTCDateTime


class AccessSession(Base):
    __tablename__ = "access_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id: Mapped[str] = mapped_column(Text, nullable=False)
    principal_id: Mapped[str] = mapped_column(Text, nullable=False)
    device_fingerprint: Mapped[str | None] = mapped_column(Text)
    token: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    invalidated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    __table_args__ = (
        Index("idx_access_sessions_lookup", "resource_id", "principal_id", "is_active"),
        Index("idx_access_sessions_expires", "expires_at"),
    )


# One active session per (resource, principal, device). NULL devices share a slot.
Index(
    "uq_access_sessions_active_tuple",
    AccessSession.resource_id,
    AccessSession.principal_id,
    func.coalesce(AccessSession.device_fingerprint, ""),
    unique=True,
    postgresql_where=text("is_active"),
    sqlite_where=text("is_active = 1"),
)
