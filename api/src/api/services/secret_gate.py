"""Secret gate for password-protected resources (conversations)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import ResourceSecret
from warden.models.enums import AttemptOutcome, SecurityEventType, Severity, SubjectKind
from warden.services.security_policy import SecurityPolicy

from api.services.access_sessions import AccessSessionManager
from api.services.attempt_ledger import LOCKED_FAILURE_REASON, AttemptLedger
from api.services.errors import NotFound, PermissionDenied, StoreUnavailable
from api.services.secret_hashing import SecretHasher
from api.services.security_audit import SecurityAuditLog
from api.services.store import Clock, store_call, utc_now

logger = logging.getLogger(__name__)

MISMATCH_FAILURE_REASON = "mismatch"


@dataclass
class VerifyResult:
    granted: bool
    session_token: str | None = None
    remaining_attempts: int | None = None
    locked_until: datetime | None = None


class SecretGate:
    """Checks a caller-supplied secret against a resource's stored hash.

    Throttling is per (resource, principal). While throttled the gate refuses
    even a correct secret. The throttle is anchored to the last genuine
    mismatch, so attempts refused during the lockout are recorded but do not
    push the unlock time out.
    """

    def __init__(
        self,
        db: AsyncSession,
        policy: SecurityPolicy,
        hasher: SecretHasher,
        ledger: AttemptLedger,
        sessions: AccessSessionManager,
        audit: SecurityAuditLog,
        *,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.policy = policy
        self.hasher = hasher
        self.ledger = ledger
        self.sessions = sessions
        self.audit = audit
        self._clock = clock

    def _store(self, operation: str):
        return store_call(operation, self.policy.store.timeout_seconds)

    async def _load(self, resource_id: str) -> ResourceSecret | None:
        async with self._store("load resource secret"):
            result = await self.db.execute(
                select(ResourceSecret).where(ResourceSecret.resource_id == resource_id)
            )
            return result.scalars().first()

    async def set_secret(
        self,
        resource_id: str,
        secret: str,
        principal_id: str,
        hint: str | None = None,
    ) -> ResourceSecret:
        """Create or replace the secret. Every existing session for the resource is revoked.

        Only the principal who created the secret may replace it.
        """
        record = await self._load(resource_id)
        if record is not None and record.created_by != principal_id:
            raise PermissionDenied("Only the secret's creator can replace it")

        async with self._store("hash resource secret"):
            secret_hash, salt = await self.hasher.hash(secret)
        now = self._clock()
        settings = self.policy.resource_secret

        async with self._store("save resource secret"):
            if record is None:
                record = ResourceSecret(
                    resource_id=resource_id,
                    secret_hash=secret_hash,
                    salt=salt,
                    hint=hint,
                    max_attempts=settings.max_attempts,
                    lockout_window_seconds=settings.lockout_window_seconds,
                    created_by=principal_id,
                    created_at=now,
                    updated_at=now,
                )
                try:
                    async with self.db.begin_nested():
                        self.db.add(record)
                except IntegrityError:
                    logger.info("Concurrent secret creation for resource %s; updating", resource_id)
                    result = await self.db.execute(
                        select(ResourceSecret).where(ResourceSecret.resource_id == resource_id)
                    )
                    record = result.scalars().one()
                    if record.created_by != principal_id:
                        raise PermissionDenied("Only the secret's creator can replace it")
                    record.secret_hash = secret_hash
                    record.salt = salt
                    record.hint = hint
                    record.updated_at = now
            else:
                record.secret_hash = secret_hash
                record.salt = salt
                record.hint = hint
                record.updated_at = now
            await self.db.flush()

        revoked = await self.sessions.invalidate_all(resource_id)
        logger.info(
            "Secret set for resource %s by %s (%d session(s) revoked)",
            resource_id,
            principal_id,
            revoked,
        )
        await self.audit.log(
            principal_id,
            SecurityEventType.CONVERSATION_PASSWORD_SET,
            {"resource_id": resource_id, "has_hint": bool(hint), "sessions_revoked": revoked},
            Severity.MEDIUM,
        )
        return record

    async def verify(
        self,
        resource_id: str,
        secret: str,
        principal_id: str,
        device_fingerprint: str | None = None,
        *,
        origin_fingerprint: str | None = None,
    ) -> VerifyResult:
        record = await self._load(resource_id)
        if record is None:
            # Unprotected resources are always open; no session is needed.
            return VerifyResult(granted=True)

        window = timedelta(seconds=record.lockout_window_seconds)
        # Count-then-record must not interleave with another attempt by the same principal.
        await self.ledger.serialize(SubjectKind.RESOURCE, resource_id, principal_id)
        failures = await self.ledger.count_failures_since(
            resource_id, SubjectKind.RESOURCE, window, principal_id=principal_id
        )

        if failures >= record.max_attempts:
            anchor = await self.ledger.last_failure_at(
                resource_id,
                SubjectKind.RESOURCE,
                window,
                principal_id=principal_id,
                exclude_reason=LOCKED_FAILURE_REASON,
            )
            if anchor is not None:
                locked_until = anchor + window
                if self._clock() < locked_until:
                    await self.ledger.record(
                        resource_id,
                        SubjectKind.RESOURCE,
                        AttemptOutcome.FAILURE,
                        reason=LOCKED_FAILURE_REASON,
                        principal_id=principal_id,
                        origin_fingerprint=origin_fingerprint,
                    )
                    logger.info(
                        "Resource %s throttled for principal %s until %s",
                        resource_id,
                        principal_id,
                        locked_until.isoformat(),
                    )
                    return VerifyResult(
                        granted=False, remaining_attempts=0, locked_until=locked_until
                    )

        try:
            async with self._store("compare resource secret"):
                matched = await self.hasher.compare(secret, record.secret_hash)
        except StoreUnavailable:
            logger.error("Secret comparison unavailable for resource %s; denying", resource_id)
            raise

        await self.ledger.record(
            resource_id,
            SubjectKind.RESOURCE,
            AttemptOutcome.SUCCESS if matched else AttemptOutcome.FAILURE,
            reason=None if matched else MISMATCH_FAILURE_REASON,
            principal_id=principal_id,
            origin_fingerprint=origin_fingerprint,
        )

        if not matched:
            return VerifyResult(
                granted=False,
                remaining_attempts=max(0, record.max_attempts - (failures + 1)),
            )

        session = await self.sessions.issue(resource_id, principal_id, device_fingerprint)
        await self.audit.log(
            principal_id,
            SecurityEventType.CONVERSATION_UNLOCKED,
            {"resource_id": resource_id, "device_fingerprint": device_fingerprint},
            Severity.LOW,
            origin_fingerprint=origin_fingerprint,
        )
        return VerifyResult(granted=True, session_token=session.token)

    async def remove_secret(self, resource_id: str, principal_id: str) -> None:
        """Drop protection. Only the principal who created the secret may do this."""
        record = await self._load(resource_id)
        if record is None:
            raise NotFound(f"No secret for resource {resource_id}")
        if record.created_by != principal_id:
            raise PermissionDenied("Only the secret's creator can remove it")

        async with self._store("remove resource secret"):
            await self.db.execute(
                delete(ResourceSecret).where(ResourceSecret.resource_id == resource_id)
            )
        await self.sessions.invalidate_all(resource_id)
        logger.info("Secret removed for resource %s by %s", resource_id, principal_id)
        await self.audit.log(
            principal_id,
            SecurityEventType.CONVERSATION_PASSWORD_SET,
            {"resource_id": resource_id, "action": "removed"},
            Severity.MEDIUM,
        )

    async def get_hint(self, resource_id: str) -> str | None:
        record = await self._load(resource_id)
        if record is None:
            raise NotFound(f"No secret for resource {resource_id}")
        return record.hint

    async def is_protected(self, resource_id: str) -> bool:
        return await self._load(resource_id) is not None
