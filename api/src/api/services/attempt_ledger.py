"""Attempt ledger and sliding-window failure counter."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import AuthAttempt
from warden.models.enums import AttemptOutcome, SubjectKind
from warden.services.security_policy import SecurityPolicy

from api.services.store import Clock, acquire_subject_lock, store_call, utc_now

logger = logging.getLogger(__name__)

# Recorded for attempts refused while the subject is throttled.
LOCKED_FAILURE_REASON = "locked"


class AttemptLedger:
    """Append-only record of attempts, queried by trailing time window.

    Counts are always derived from the rows at call time; nothing is cached
    and nothing is deleted to reset a count.
    """

    def __init__(self, db: AsyncSession, policy: SecurityPolicy, *, clock: Clock = utc_now):
        self.db = db
        self.policy = policy
        self._clock = clock

    def _store(self, operation: str):
        return store_call(operation, self.policy.store.timeout_seconds)

    async def serialize(self, kind: SubjectKind, subject_id: str, principal_id: str = "") -> None:
        async with self._store("attempt ledger lock"):
            await acquire_subject_lock(self.db, kind.value, subject_id, principal_id)

    async def record(
        self,
        subject_id: str,
        kind: SubjectKind,
        outcome: AttemptOutcome,
        *,
        reason: str | None = None,
        principal_id: str | None = None,
        origin_fingerprint: str | None = None,
    ) -> AuthAttempt:
        attempt = AuthAttempt(
            subject_id=subject_id,
            subject_kind=kind,
            principal_id=principal_id,
            outcome=outcome,
            failure_reason=reason if outcome == AttemptOutcome.FAILURE else None,
            origin_fingerprint=origin_fingerprint,
            occurred_at=self._clock(),
        )
        async with self._store("record attempt"):
            self.db.add(attempt)
            await self.db.flush()
        return attempt

    def _failures_in_window(
        self,
        subject_id: str,
        kind: SubjectKind,
        window: timedelta,
        principal_id: str | None,
    ) -> list:
        cutoff = self._clock() - window
        conditions = [
            AuthAttempt.subject_kind == kind,
            AuthAttempt.subject_id == subject_id,
            AuthAttempt.outcome == AttemptOutcome.FAILURE,
            AuthAttempt.occurred_at >= cutoff,
        ]
        if principal_id is not None:
            conditions.append(AuthAttempt.principal_id == principal_id)
        return conditions

    async def count_failures_since(
        self,
        subject_id: str,
        kind: SubjectKind,
        window: timedelta,
        *,
        principal_id: str | None = None,
    ) -> int:
        conditions = self._failures_in_window(subject_id, kind, window, principal_id)
        async with self._store("count failures"):
            result = await self.db.execute(
                select(func.count()).select_from(AuthAttempt).where(*conditions)
            )
            count = result.scalar()
        return int(count or 0)

    async def last_failure_at(
        self,
        subject_id: str,
        kind: SubjectKind,
        window: timedelta,
        *,
        principal_id: str | None = None,
        exclude_reason: str | None = None,
    ) -> datetime | None:
        conditions = self._failures_in_window(subject_id, kind, window, principal_id)
        if exclude_reason is not None:
            conditions.append(
                (AuthAttempt.failure_reason.is_(None))
                | (AuthAttempt.failure_reason != exclude_reason)
            )
        async with self._store("last failure"):
            result = await self.db.execute(
                select(func.max(AuthAttempt.occurred_at)).where(*conditions)
            )
            value = result.scalar()
        if isinstance(value, str):
            # SQLite aggregates bypass the column type and hand back raw text.
            value = datetime.fromisoformat(value)
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=self._clock().tzinfo)
        return value

    async def prune(self, older_than: datetime) -> int:
        """Retention cleanup only; counts never depend on it."""
        async with self._store("prune attempts"):
            result = await self.db.execute(
                delete(AuthAttempt).where(AuthAttempt.occurred_at < older_than)
            )
        deleted = int(result.rowcount or 0)
        if deleted:
            logger.info("Pruned %d attempt records older than %s", deleted, older_than.isoformat())
        return deleted
