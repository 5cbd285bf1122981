"""TOTP enrollment per principal."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, JSONType, UTCDateTime


class TwoFactorEnrollment(Base):
    __tablename__ = "two_factor_enrollments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    # Fernet ciphertext of the base32 TOTP secret.
    secret: Mapped[str] = mapped_column(Text, nullable=False)
    backup_code_hashes: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )
