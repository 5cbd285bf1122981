"""Account lockout state machine.

States per principal:

    Unlocked -> Locked(temporary) -> Unlocked     (expiry or admin unlock)
    Unlocked -> Locked(permanent)                 (admin unlock only)

Expiry is observed when a lockout is inspected, never scheduled. A partial
unique index keeps at most one active lockout row per principal; concurrent
lock requests converge on that row instead of inserting duplicates.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import AccountLockout
from warden.models.enums import (
    AttemptOutcome,
    LockoutReason,
    SecurityEventType,
    Severity,
    SubjectKind,
)
from warden.services.security_policy import SecurityPolicy

from api.services.attempt_ledger import AttemptLedger
from api.services.presence import PresenceStore
from api.services.security_audit import SecurityAuditLog
from api.services.store import Clock, store_call, utc_now

logger = logging.getLogger(__name__)


@dataclass
class LockoutStatus:
    locked: bool
    lockout: AccountLockout | None = None
    remaining_minutes: int | None = None

    @property
    def is_permanent(self) -> bool:
        return bool(self.lockout and self.lockout.is_permanent)

    @property
    def unlocks_at(self) -> datetime | None:
        return self.lockout.unlocks_at if self.lockout else None


@dataclass
class FailedLoginOutcome:
    locked: bool
    attempts_count: int
    lockout: AccountLockout | None = None


class LockoutManager:
    def __init__(
        self,
        db: AsyncSession,
        policy: SecurityPolicy,
        ledger: AttemptLedger,
        audit: SecurityAuditLog,
        presence: PresenceStore,
        *,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.policy = policy
        self.ledger = ledger
        self.audit = audit
        self.presence = presence
        self._clock = clock

    def _store(self, operation: str):
        return store_call(operation, self.policy.store.timeout_seconds)

    async def _active_rows(self, principal_id: str) -> list[AccountLockout]:
        result = await self.db.execute(
            select(AccountLockout)
            .where(
                AccountLockout.principal_id == principal_id,
                AccountLockout.is_active.is_(True),
            )
            .order_by(AccountLockout.locked_at.desc())
        )
        return list(result.scalars().all())

    def _deactivate(self, lockouts: list[AccountLockout], now: datetime) -> None:
        for lockout in lockouts:
            lockout.is_active = False
            lockout.deactivated_at = now

    async def is_locked(self, principal_id: str) -> LockoutStatus:
        """Report the current lockout, lazily retiring any that have expired.

        Store failures raise StoreUnavailable; callers must not read that as
        "unlocked".
        """
        now = self._clock()
        async with self._store("check lockout"):
            rows = await self._active_rows(principal_id)
            expired = [row for row in rows if not row.is_effective(now)]
            if expired:
                self._deactivate(expired, now)
                await self.db.flush()
                logger.info(
                    "Deactivated %d expired lockout(s) for principal %s",
                    len(expired),
                    principal_id,
                )

        current = next((row for row in rows if row.is_effective(now)), None)
        if current is None:
            return LockoutStatus(locked=False)
        remaining = None
        if not current.is_permanent and current.unlocks_at is not None:
            remaining = max(1, math.ceil((current.unlocks_at - now).total_seconds() / 60))
        return LockoutStatus(locked=True, lockout=current, remaining_minutes=remaining)

    async def lock(
        self,
        principal_id: str,
        reason: LockoutReason,
        *,
        duration: timedelta | None = None,
        permanent: bool = False,
        issuing_admin: str | None = None,
        attempts_count: int = 0,
    ) -> AccountLockout:
        """Lock a principal. Idempotent: an existing active lockout is reused.

        A permanent request escalates an existing temporary lockout.
        """
        now = self._clock()
        duration = duration or self.policy.lockout.duration
        unlocks_at = None if permanent else now + duration

        async with self._store("lock account"):
            rows = await self._active_rows(principal_id)
            self._deactivate([row for row in rows if not row.is_effective(now)], now)
            await self.db.flush()
            existing = next((row for row in rows if row.is_effective(now)), None)

            created = False
            if existing is None:
                lockout = AccountLockout(
                    principal_id=principal_id,
                    reason=reason,
                    locked_at=now,
                    unlocks_at=unlocks_at,
                    is_permanent=permanent,
                    is_active=True,
                    attempts_count=attempts_count,
                    issuing_admin=issuing_admin,
                )
                try:
                    async with self.db.begin_nested():
                        self.db.add(lockout)
                    created = True
                except IntegrityError:
                    # Another request locked this principal first; converge on its row.
                    logger.info("Concurrent lockout for principal %s; reusing it", principal_id)
                    rows = await self._active_rows(principal_id)
                    existing = next((row for row in rows if row.is_effective(now)), None)
                    if existing is None:
                        raise
            if not created:
                lockout = existing
                escalated = permanent and not lockout.is_permanent
                if escalated:
                    lockout.is_permanent = True
                    lockout.unlocks_at = None
                    lockout.reason = reason
                    lockout.issuing_admin = issuing_admin or lockout.issuing_admin
                    await self.db.flush()
                else:
                    return lockout

        logger.warning(
            "Locked principal %s (reason=%s, permanent=%s, unlocks_at=%s)",
            principal_id,
            reason.value,
            lockout.is_permanent,
            lockout.unlocks_at.isoformat() if lockout.unlocks_at else None,
        )
        try:
            await self.presence.set_offline(principal_id)
        except Exception:
            logger.exception("Failed to mark principal %s offline after lockout", principal_id)
        await self.audit.log(
            principal_id,
            SecurityEventType.ACCOUNT_LOCKED,
            {
                "reason": reason.value,
                "permanent": lockout.is_permanent,
                "unlocks_at": lockout.unlocks_at.isoformat() if lockout.unlocks_at else None,
                "attempts_count": attempts_count,
                "issuing_admin": issuing_admin,
            },
            Severity.HIGH,
        )
        return lockout

    async def unlock(self, principal_id: str, *, admin_id: str | None = None) -> int:
        """Deactivate every active lockout for the principal. Safe to repeat."""
        now = self._clock()
        async with self._store("unlock account"):
            result = await self.db.execute(
                update(AccountLockout)
                .where(
                    AccountLockout.principal_id == principal_id,
                    AccountLockout.is_active.is_(True),
                )
                .values(is_active=False, deactivated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        deactivated = int(result.rowcount or 0)
        logger.info(
            "Unlocked principal %s (%d lockout(s) deactivated, admin=%s)",
            principal_id,
            deactivated,
            admin_id,
        )
        await self.audit.log(
            principal_id,
            SecurityEventType.ACCOUNT_UNLOCKED,
            {"deactivated": deactivated, "admin_id": admin_id},
            Severity.MEDIUM,
        )
        return deactivated

    async def note_attempt_while_locked(self, status: LockoutStatus) -> None:
        if status.lockout is None:
            return
        async with self._store("count unlock attempt"):
            status.lockout.unlock_attempts = (status.lockout.unlock_attempts or 0) + 1
            await self.db.flush()

    async def record_failed_login(
        self,
        principal_id: str,
        *,
        reason: str | None = None,
        origin_fingerprint: str | None = None,
    ) -> FailedLoginOutcome:
        """Write the failure, then lock once the trailing window crosses the threshold."""
        settings = self.policy.lockout
        await self.ledger.serialize(SubjectKind.ACCOUNT, principal_id)
        await self.ledger.record(
            principal_id,
            SubjectKind.ACCOUNT,
            AttemptOutcome.FAILURE,
            reason=reason,
            principal_id=principal_id,
            origin_fingerprint=origin_fingerprint,
        )
        window = settings.window
        released_at = await self._last_release(principal_id)
        if released_at is not None:
            # Failures from before the last lockout ended have been paid for.
            window = min(window, self._clock() - released_at)
        count = await self.ledger.count_failures_since(principal_id, SubjectKind.ACCOUNT, window)
        if count < settings.max_failures:
            return FailedLoginOutcome(locked=False, attempts_count=count)

        lockout = await self.lock(
            principal_id,
            LockoutReason.FAILED_LOGIN,
            duration=settings.duration,
            attempts_count=count,
        )
        return FailedLoginOutcome(locked=True, attempts_count=count, lockout=lockout)

    async def _last_release(self, principal_id: str) -> datetime | None:
        async with self._store("last lockout release"):
            result = await self.db.execute(
                select(AccountLockout.deactivated_at)
                .where(
                    AccountLockout.principal_id == principal_id,
                    AccountLockout.is_active.is_(False),
                    AccountLockout.deactivated_at.is_not(None),
                )
                .order_by(AccountLockout.deactivated_at.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def history(self, principal_id: str) -> list[AccountLockout]:
        async with self._store("lockout history"):
            result = await self.db.execute(
                select(AccountLockout)
                .where(AccountLockout.principal_id == principal_id)
                .order_by(AccountLockout.locked_at.desc())
            )
            return list(result.scalars().all())
