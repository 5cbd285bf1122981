"""Account lockout and login-attempt endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field
from warden.models import AccountLockout
from warden.models.enums import LockoutReason

from api.dependencies import (
    Principal,
    ensure_can_read,
    get_current_principal,
    get_security_services,
    require_admin,
    require_service,
)
from api.services.security_services import SecurityServices, run_suspicion_check

logger = logging.getLogger(__name__)
router = APIRouter()


class PrincipalRequest(BaseModel):
    principal_id: str = Field(min_length=1, max_length=128)


class LockRequest(PrincipalRequest):
    reason: LockoutReason = LockoutReason.ADMIN_ACTION
    duration_minutes: int | None = Field(default=None, ge=1, le=60 * 24 * 365)
    permanent: bool = False


class LoginAttemptRequest(PrincipalRequest):
    success: bool
    failure_reason: str | None = Field(default=None, max_length=120)
    origin_fingerprint: str | None = Field(default=None, max_length=128)


def _lockout_payload(lockout: AccountLockout) -> dict:
    return {
        "id": str(lockout.id),
        "principal_id": lockout.principal_id,
        "reason": lockout.reason.value,
        "locked_at": lockout.locked_at.isoformat() if lockout.locked_at else None,
        "unlocks_at": lockout.unlocks_at.isoformat() if lockout.unlocks_at else None,
        "is_permanent": lockout.is_permanent,
        "is_active": lockout.is_active,
        "attempts_count": lockout.attempts_count,
        "unlock_attempts": lockout.unlock_attempts,
        "issuing_admin": lockout.issuing_admin,
        "deactivated_at": lockout.deactivated_at.isoformat() if lockout.deactivated_at else None,
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@router.post("/lockout/check")
async def check_lockout(
    req: PrincipalRequest,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    ensure_can_read(principal, req.principal_id, allow_service=True)
    status = await services.lockouts.is_locked(req.principal_id)
    return {
        "locked": status.locked,
        "remaining_minutes": status.remaining_minutes,
        "is_permanent": status.is_permanent,
        "unlocks_at": _iso(status.unlocks_at),
    }


@router.post("/lockout/unlock")
async def unlock_account(
    req: PrincipalRequest,
    admin: Principal = Depends(require_admin),
    services: SecurityServices = Depends(get_security_services),
):
    await services.lockouts.unlock(req.principal_id, admin_id=admin.id)
    return {"unlocked": True}


@router.post("/lockout/lock")
async def lock_account(
    req: LockRequest,
    admin: Principal = Depends(require_admin),
    services: SecurityServices = Depends(get_security_services),
):
    duration = None
    if req.duration_minutes is not None:
        duration = timedelta(minutes=req.duration_minutes)
    lockout = await services.lockouts.lock(
        req.principal_id,
        req.reason,
        duration=duration,
        permanent=req.permanent,
        issuing_admin=admin.id,
    )
    return _lockout_payload(lockout)


@router.get("/lockout/history/{principal_id}")
async def lockout_history(
    principal_id: str,
    _: Principal = Depends(require_admin),
    services: SecurityServices = Depends(get_security_services),
):
    lockouts = await services.lockouts.history(principal_id)
    return {"lockouts": [_lockout_payload(lockout) for lockout in lockouts]}


@router.post("/login-attempts")
async def record_login_attempt(
    req: LoginAttemptRequest,
    background_tasks: BackgroundTasks,
    _: Principal = Depends(require_service),
    services: SecurityServices = Depends(get_security_services),
):
    if req.success and req.failure_reason:
        raise HTTPException(status_code=422, detail="failure_reason is only valid for failures")
    outcome = await services.login_guard.record_attempt(
        req.principal_id,
        req.success,
        failure_reason=req.failure_reason,
        origin_fingerprint=req.origin_fingerprint,
    )
    background_tasks.add_task(run_suspicion_check, req.principal_id, req.origin_fingerprint)
    return {
        "locked": outcome.locked,
        "attempts_count": outcome.attempts_count,
        "locked_until": _iso(outcome.locked_until),
        "is_permanent": outcome.is_permanent,
    }
