"""Security audit event - append-only trail of security-relevant actions."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from warden.models.base import Base, JSONType, UTCDateTime, text_enum
from warden.models.enums import SecurityEventType, Severity


class SecurityAuditEvent(Base):
    __tablename__ = "security_audit_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # NULL for system events.
    principal_id: Mapped[str | None] = mapped_column(Text)
    event_type: Mapped[SecurityEventType] = mapped_column(
        text_enum(SecurityEventType, length=64), nullable=False
    )
    event_data: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    severity: Mapped[Severity] = mapped_column(text_enum(Severity), nullable=False)
    origin_fingerprint: Mapped[str | None] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_security_audit_principal_time", "principal_id", "occurred_at"),
        Index("idx_security_audit_type_time", "event_type", "occurred_at"),
    )
