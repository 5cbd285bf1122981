"""Wires the access-control services over one database session."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from warden.database import get_session
from warden.models.enums import LockoutReason
from warden.services.security_policy import SecurityPolicy, load_security_policy

from api.services.access_sessions import AccessSessionManager
from api.services.attempt_ledger import AttemptLedger
from api.services.lockout import LockoutManager
from api.services.login_guard import LoginGuard
from api.services.password_history import PasswordHistory
from api.services.presence import PresenceStore, SqlPresenceStore
from api.services.secret_gate import SecretGate
from api.services.secret_hashing import BcryptSecretHasher, SecretHasher
from api.services.security_audit import SecurityAuditLog, SuspicionHeuristic, SuspicionVerdict
from api.services.store import Clock, utc_now
from api.services.two_factor import TwoFactorService

logger = logging.getLogger(__name__)


@dataclass
class SecurityServices:
    policy: SecurityPolicy
    ledger: AttemptLedger
    audit: SecurityAuditLog
    suspicion: SuspicionHeuristic
    lockouts: LockoutManager
    sessions: AccessSessionManager
    gate: SecretGate
    login_guard: LoginGuard
    passwords: PasswordHistory
    two_factor: TwoFactorService


def build_security_services(
    db: AsyncSession,
    policy: SecurityPolicy,
    *,
    hasher: SecretHasher | None = None,
    presence: PresenceStore | None = None,
    clock: Clock = utc_now,
) -> SecurityServices:
    hasher = hasher or BcryptSecretHasher(policy.resource_secret.hash_rounds)
    presence = presence or SqlPresenceStore(db, clock=clock)
    ledger = AttemptLedger(db, policy, clock=clock)
    audit = SecurityAuditLog(db, policy, clock=clock)
    lockouts = LockoutManager(db, policy, ledger, audit, presence, clock=clock)
    sessions = AccessSessionManager(db, policy, clock=clock)
    return SecurityServices(
        policy=policy,
        ledger=ledger,
        audit=audit,
        suspicion=SuspicionHeuristic(db, policy, audit, clock=clock),
        lockouts=lockouts,
        sessions=sessions,
        gate=SecretGate(db, policy, hasher, ledger, sessions, audit, clock=clock),
        login_guard=LoginGuard(policy, ledger, lockouts, audit),
        passwords=PasswordHistory(db, policy, hasher, audit, clock=clock),
        two_factor=TwoFactorService(db, policy, audit, clock=clock),
    )


async def apply_suspicion(
    services: SecurityServices, principal_id: str, origin_fingerprint: str | None
) -> SuspicionVerdict:
    verdict = await services.suspicion.evaluate(principal_id, origin_fingerprint)
    if verdict.suspicious and services.policy.suspicion.lock_on_detection:
        await services.lockouts.lock(principal_id, LockoutReason.SUSPICIOUS_ACTIVITY)
    return verdict


async def run_suspicion_check(principal_id: str, origin_fingerprint: str | None = None) -> None:
    """Background task: evaluate in a separate unit of work after the response."""
    try:
        async with get_session() as db:
            services = build_security_services(db, load_security_policy())
            await apply_suspicion(services, principal_id, origin_fingerprint)
    except Exception:
        logger.exception("Suspicion check failed for principal %s", principal_id)
