"""Attempt ledger - one row per authentication or secret check."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, UTCDateTime, text_enum
from warden.models.enums import AttemptOutcome, SubjectKind


class AuthAttempt(Base):
    __tablename__ = "auth_attempts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_id: Mapped[str] = mapped_column(Text, nullable=False)
    subject_kind: Mapped[SubjectKind] = mapped_column(text_enum(SubjectKind), nullable=False)
    # Who made the attempt; for account attempts this equals subject_id.
    principal_id: Mapped[str | None] = mapped_column(Text)
    outcome: Mapped[AttemptOutcome] = mapped_column(text_enum(AttemptOutcome), nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    origin_fingerprint: Mapped[str | None] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index(
            "idx_auth_attempts_subject_time",
            "subject_kind",
            "subject_id",
            "outcome",
            "occurred_at",
        ),
        Index(
            "idx_auth_attempts_subject_principal_time",
            "subject_kind",
            "subject_id",
            "principal_id",
            "occurred_at",
        ),
        Index("idx_auth_attempts_time", "occurred_at"),
    )
