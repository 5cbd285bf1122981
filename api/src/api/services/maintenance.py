"""Background maintenance loop (access-control storage reclamation).

Nothing here is needed for correctness: windows, expiry and lockout
state are all computed at read time. The sweep only keeps tables small.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from warden.config import get_settings
from warden.database import get_session
from warden.models import AccountLockout
from warden.services.encryption import rotation_pending
from warden.services.security_policy import SecurityPolicy, load_security_policy

from api.services.access_sessions import AccessSessionManager
from api.services.attempt_ledger import AttemptLedger
from api.services.security_audit import SecurityAuditLog
from api.services.store import Clock, utc_now
from api.services.two_factor import TwoFactorService

logger = logging.getLogger(__name__)


async def run_security_cleanup(
    db: AsyncSession,
    policy: SecurityPolicy,
    *,
    trigger: str = "manual",
    retention_days: int | None = None,
    clock: Clock = utc_now,
) -> dict[str, Any]:
    settings = get_settings()
    now = clock()
    days = max(1, int(retention_days or settings.attempt_retention_days))
    attempt_cutoff = now - timedelta(days=days)

    attempts_deleted = await AttemptLedger(db, policy, clock=clock).prune(attempt_cutoff)
    sessions_deleted = await AccessSessionManager(db, policy, clock=clock).prune_expired(now)
    lockouts_expired = (
        await db.execute(
            update(AccountLockout)
            .where(
                AccountLockout.is_active.is_(True),
                AccountLockout.is_permanent.is_(False),
                AccountLockout.unlocks_at.is_not(None),
                AccountLockout.unlocks_at <= now,
            )
            .values(is_active=False, deactivated_at=now)
            .execution_options(synchronize_session=False)
        )
    ).rowcount or 0

    secrets_rotated = 0
    if rotation_pending():
        audit = SecurityAuditLog(db, policy, clock=clock)
        two_factor = TwoFactorService(db, policy, audit, clock=clock)
        secrets_rotated = await two_factor.reencrypt_secrets()

    summary = {
        "status": "ok",
        "trigger": trigger,
        "ran_at": now.isoformat(),
        "attempts_deleted": int(attempts_deleted),
        "sessions_deleted": int(sessions_deleted),
        "lockouts_expired": int(lockouts_expired),
        "two_factor_secrets_rotated": secrets_rotated,
        "attempt_cutoff": attempt_cutoff.isoformat(),
    }
    logger.info(
        "Security cleanup (%s): %d attempts, %d sessions, %d lockouts, %d secrets rotated",
        trigger,
        summary["attempts_deleted"],
        summary["sessions_deleted"],
        summary["lockouts_expired"],
        secrets_rotated,
    )
    return summary


async def run_maintenance_worker(
    stop_event: asyncio.Event,
    *,
    poll_interval_seconds: float | None = None,
) -> None:
    settings = get_settings()
    interval = timedelta(seconds=max(1.0, float(settings.maintenance_interval_seconds)))
    poll = poll_interval_seconds or min(300.0, interval.total_seconds())
    last_cleanup_at: datetime | None = None

    logger.info("Maintenance worker started")
    try:
        while not stop_event.is_set():
            now = utc_now()
            if last_cleanup_at is None or (now - last_cleanup_at) >= interval:
                try:
                    async with get_session() as db:
                        await run_security_cleanup(
                            db, load_security_policy(), trigger="scheduled"
                        )
                    last_cleanup_at = utc_now()
                except Exception:
                    logger.exception("Scheduled security cleanup failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll)
            except TimeoutError:
                pass
    finally:
        logger.info("Maintenance worker stopped")
