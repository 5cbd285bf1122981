"""Security audit trail and the suspicion heuristic that reads it."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import SecurityAuditEvent
from warden.models.enums import SecurityEventType, Severity
from warden.services.security_policy import SecurityPolicy

from api.services.store import Clock, store_call, utc_now

logger = logging.getLogger(__name__)

MULTIPLE_LOCATIONS_REASON = "multiple login locations"
RAPID_FAILURES_REASON = "rapid failed attempts"


@dataclass
class AuditQuery:
    principal_id: str | None = None
    event_types: list[SecurityEventType] = field(default_factory=list)
    severities: list[Severity] = field(default_factory=list)
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int = 50
    offset: int = 0


@dataclass
class SuspicionVerdict:
    suspicious: bool
    reasons: list[str] = field(default_factory=list)


class SecurityAuditLog:
    """Append-only event stream. Writing never fails the caller."""

    def __init__(self, db: AsyncSession, policy: SecurityPolicy, *, clock: Clock = utc_now):
        self.db = db
        self.policy = policy
        self._clock = clock

    def _store(self, operation: str):
        return store_call(operation, self.policy.store.timeout_seconds)

    async def log(
        self,
        principal_id: str | None,
        event_type: SecurityEventType,
        data: dict[str, Any] | None = None,
        severity: Severity = Severity.MEDIUM,
        *,
        origin_fingerprint: str | None = None,
    ) -> None:
        event = SecurityAuditEvent(
            principal_id=principal_id,
            event_type=event_type,
            event_data=data or {},
            severity=severity,
            origin_fingerprint=origin_fingerprint,
            occurred_at=self._clock(),
        )
        try:
            async with self._store("write audit event"):
                async with self.db.begin_nested():
                    self.db.add(event)
        except Exception as exc:
            logger.warning(
                "Failed to write security audit event %s for %s: %s",
                event_type.value,
                principal_id or "system",
                exc,
            )

    async def list_events(self, query: AuditQuery) -> tuple[list[SecurityAuditEvent], int]:
        conditions = []
        if query.principal_id is not None:
            conditions.append(SecurityAuditEvent.principal_id == query.principal_id)
        if query.event_types:
            conditions.append(SecurityAuditEvent.event_type.in_(query.event_types))
        if query.severities:
            conditions.append(SecurityAuditEvent.severity.in_(query.severities))
        if query.date_from is not None:
            conditions.append(SecurityAuditEvent.occurred_at >= query.date_from)
        if query.date_to is not None:
            conditions.append(SecurityAuditEvent.occurred_at <= query.date_to)

        async with self._store("list audit events"):
            total = (
                await self.db.execute(
                    select(func.count()).select_from(SecurityAuditEvent).where(*conditions)
                )
            ).scalar()
            result = await self.db.execute(
                select(SecurityAuditEvent)
                .where(*conditions)
                .order_by(SecurityAuditEvent.occurred_at.desc())
                .offset(query.offset)
                .limit(query.limit)
            )
            events = list(result.scalars().all())
        return events, int(total or 0)

    async def stats(self, principal_id: str) -> dict[str, Any]:
        now = self._clock()
        async with self._store("audit stats"):
            severity_rows = (
                await self.db.execute(
                    select(SecurityAuditEvent.severity, func.count())
                    .where(SecurityAuditEvent.principal_id == principal_id)
                    .group_by(SecurityAuditEvent.severity)
                )
            ).all()
            recent_failures = (
                await self.db.execute(
                    select(func.count())
                    .select_from(SecurityAuditEvent)
                    .where(
                        SecurityAuditEvent.principal_id == principal_id,
                        SecurityAuditEvent.event_type == SecurityEventType.LOGIN_FAILURE,
                        SecurityAuditEvent.occurred_at >= now - timedelta(hours=24),
                    )
                )
            ).scalar()
            last_success = await self._latest(principal_id, SecurityEventType.LOGIN_SUCCESS)
            last_failure = await self._latest(principal_id, SecurityEventType.LOGIN_FAILURE)

        by_severity = {severity.value: 0 for severity in Severity}
        for severity, count in severity_rows:
            by_severity[Severity(severity).value] = int(count)
        return {
            "total_events": sum(by_severity.values()),
            "by_severity": by_severity,
            "recent_failed_logins": int(recent_failures or 0),
            "last_login_success": last_success.isoformat() if last_success else None,
            "last_login_failure": last_failure.isoformat() if last_failure else None,
        }

    async def _latest(self, principal_id: str, event_type: SecurityEventType) -> datetime | None:
        result = await self.db.execute(
            select(SecurityAuditEvent.occurred_at)
            .where(
                SecurityAuditEvent.principal_id == principal_id,
                SecurityAuditEvent.event_type == event_type,
            )
            .order_by(SecurityAuditEvent.occurred_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def erase_principal(self, principal_id: str) -> int:
        """Compliance erasure of one principal's history."""
        async with self._store("erase audit events"):
            result = await self.db.execute(
                delete(SecurityAuditEvent).where(SecurityAuditEvent.principal_id == principal_id)
            )
        deleted = int(result.rowcount or 0)
        logger.info("Erased %d security audit events for principal %s", deleted, principal_id)
        return deleted


class SuspicionHeuristic:
    """Flags login patterns worth a closer look.

    It only reports; whether to lock is up to the caller.
    """

    def __init__(
        self,
        db: AsyncSession,
        policy: SecurityPolicy,
        audit: SecurityAuditLog,
        *,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.policy = policy
        self.audit = audit
        self._clock = clock

    async def evaluate(
        self, principal_id: str, current_origin: str | None = None
    ) -> SuspicionVerdict:
        settings = self.policy.suspicion
        now = self._clock()
        reasons: list[str] = []

        async with store_call("suspicion heuristic", self.policy.store.timeout_seconds):
            origins = (
                await self.db.execute(
                    select(SecurityAuditEvent.origin_fingerprint).where(
                        SecurityAuditEvent.principal_id == principal_id,
                        SecurityAuditEvent.event_type == SecurityEventType.LOGIN_SUCCESS,
                        SecurityAuditEvent.occurred_at
                        >= now - timedelta(minutes=settings.location_window_minutes),
                    )
                )
            ).scalars().all()
            failures = (
                await self.db.execute(
                    select(func.count())
                    .select_from(SecurityAuditEvent)
                    .where(
                        SecurityAuditEvent.principal_id == principal_id,
                        SecurityAuditEvent.event_type == SecurityEventType.LOGIN_FAILURE,
                        SecurityAuditEvent.occurred_at
                        >= now - timedelta(minutes=settings.failure_window_minutes),
                    )
                )
            ).scalar()

        if _distinct(origins) > settings.max_distinct_origins:
            reasons.append(MULTIPLE_LOCATIONS_REASON)
        if int(failures or 0) > settings.max_recent_failures:
            reasons.append(RAPID_FAILURES_REASON)

        verdict = SuspicionVerdict(suspicious=bool(reasons), reasons=reasons)
        if verdict.suspicious:
            logger.warning(
                "Suspicious activity for principal %s: %s", principal_id, ", ".join(reasons)
            )
            await self.audit.log(
                principal_id,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                {"reasons": reasons, "origin": current_origin},
                Severity.HIGH,
                origin_fingerprint=current_origin,
            )
        return verdict


def _distinct(origins: Iterable[str | None]) -> int:
    return len({origin for origin in origins if origin})
