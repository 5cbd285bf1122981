"""Presence status mirrored from the realtime channel."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Text, func
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, UTCDateTime, text_enum
from warden.models.enums import PresenceStatus


class PrincipalPresence(Base):
    __tablename__ = "principal_presence"

    principal_id: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[PresenceStatus] = mapped_column(
        text_enum(PresenceStatus), nullable=False, default=PresenceStatus.OFFLINE
    )
    last_activity: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )
