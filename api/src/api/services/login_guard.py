"""Account login attempts: ledger, audit trail and lockout in one step."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from warden.models.enums import AttemptOutcome, SecurityEventType, Severity, SubjectKind
from warden.services.security_policy import SecurityPolicy

from api.services.attempt_ledger import LOCKED_FAILURE_REASON, AttemptLedger
from api.services.lockout import LockoutManager
from api.services.security_audit import SecurityAuditLog

logger = logging.getLogger(__name__)


@dataclass
class LoginOutcome:
    locked: bool
    attempts_count: int = 0
    locked_until: datetime | None = None
    is_permanent: bool = False


class LoginGuard:
    """Records the result of a credential check made elsewhere.

    A principal that is already locked stays locked: the attempt is counted
    on the lockout row, not in the sliding window, and success does not
    release it.
    """

    def __init__(
        self,
        policy: SecurityPolicy,
        ledger: AttemptLedger,
        lockouts: LockoutManager,
        audit: SecurityAuditLog,
    ):
        self.policy = policy
        self.ledger = ledger
        self.lockouts = lockouts
        self.audit = audit

    async def record_attempt(
        self,
        principal_id: str,
        success: bool,
        *,
        failure_reason: str | None = None,
        origin_fingerprint: str | None = None,
    ) -> LoginOutcome:
        status = await self.lockouts.is_locked(principal_id)
        if status.locked:
            await self.lockouts.note_attempt_while_locked(status)
            await self.audit.log(
                principal_id,
                SecurityEventType.LOGIN_FAILURE,
                {"reason": LOCKED_FAILURE_REASON},
                Severity.MEDIUM,
                origin_fingerprint=origin_fingerprint,
            )
            return LoginOutcome(
                locked=True,
                attempts_count=status.lockout.attempts_count if status.lockout else 0,
                locked_until=status.unlocks_at,
                is_permanent=status.is_permanent,
            )

        if success:
            await self.ledger.record(
                principal_id,
                SubjectKind.ACCOUNT,
                AttemptOutcome.SUCCESS,
                principal_id=principal_id,
                origin_fingerprint=origin_fingerprint,
            )
            await self.audit.log(
                principal_id,
                SecurityEventType.LOGIN_SUCCESS,
                {},
                Severity.LOW,
                origin_fingerprint=origin_fingerprint,
            )
            return LoginOutcome(locked=False)

        result = await self.lockouts.record_failed_login(
            principal_id,
            reason=failure_reason,
            origin_fingerprint=origin_fingerprint,
        )
        await self.audit.log(
            principal_id,
            SecurityEventType.LOGIN_FAILURE,
            {"reason": failure_reason, "attempts_count": result.attempts_count},
            Severity.MEDIUM,
            origin_fingerprint=origin_fingerprint,
        )
        if result.locked:
            logger.warning(
                "Principal %s locked after %d failed logins",
                principal_id,
                result.attempts_count,
            )
        return LoginOutcome(
            locked=result.locked,
            attempts_count=result.attempts_count,
            locked_until=result.lockout.unlocks_at if result.lockout else None,
            is_permanent=bool(result.lockout and result.lockout.is_permanent),
        )
