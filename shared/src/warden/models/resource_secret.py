"""Per-resource secret (password-protected conversations)."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Integer, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, UTCDateTime


class ResourceSecret(Base):
    __tablename__ = "resource_secrets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    secret_hash: Mapped[str] = mapped_column(Text, nullable=False)
    salt: Mapped[str] = mapped_column(Text, nullable=False)
    hint: Mapped[str | None] = mapped_column(Text)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    lockout_window_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=300)
    created_by: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )
