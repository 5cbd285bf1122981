"""Password hygiene and two-factor endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.dependencies import (
    Principal,
    get_current_principal,
    get_security_services,
    require_admin,
    require_service,
)
from api.services.errors import NotFound
from api.services.password_history import validate_password_strength
from api.services.secret_hashing import MAX_SECRET_BYTES
from api.services.security_services import SecurityServices

router = APIRouter()


class PasswordCheckRequest(BaseModel):
    password: str = Field(min_length=1, max_length=MAX_SECRET_BYTES)


class PasswordSaveRequest(PasswordCheckRequest):
    principal_id: str = Field(min_length=1, max_length=128)


class TwoFactorEnableRequest(BaseModel):
    secret: str = Field(min_length=16, max_length=64)
    code: str = Field(min_length=6, max_length=8)


class TwoFactorCodeRequest(BaseModel):
    code: str = Field(min_length=6, max_length=16)


@router.post("/password/check")
async def check_password(
    req: PasswordCheckRequest,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    strength = validate_password_strength(req.password)
    reused = await services.passwords.is_reused(principal.id, req.password)
    return {
        "is_valid": strength.is_valid and not reused,
        "score": strength.score,
        "feedback": strength.feedback,
        "is_reused": reused,
    }


@router.post("/password/history")
async def save_password(
    req: PasswordSaveRequest,
    _: Principal = Depends(require_service),
    services: SecurityServices = Depends(get_security_services),
):
    try:
        await services.passwords.save(req.principal_id, req.password)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"ok": True}


@router.delete("/password/history/{principal_id}")
async def clear_password_history(
    principal_id: str,
    _: Principal = Depends(require_admin),
    services: SecurityServices = Depends(get_security_services),
):
    deleted = await services.passwords.clear(principal_id)
    return {"deleted": deleted}


@router.post("/two-factor/setup")
async def setup_two_factor(
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    setup = services.two_factor.begin_enrollment(principal.id)
    return {"secret": setup.secret, "provisioning_uri": setup.provisioning_uri}


@router.post("/two-factor/enable")
async def enable_two_factor(
    req: TwoFactorEnableRequest,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    codes = await services.two_factor.enable(principal.id, req.secret, req.code)
    if codes is None:
        raise HTTPException(status_code=400, detail="Invalid verification code")
    return {"enabled": True, "backup_codes": codes}


@router.post("/two-factor/disable")
async def disable_two_factor(
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    try:
        await services.two_factor.disable(principal.id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Two-factor is not enabled")
    return {"enabled": False}


@router.post("/two-factor/verify")
async def verify_two_factor(
    req: TwoFactorCodeRequest,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    try:
        check = await services.two_factor.verify(principal.id, req.code)
    except NotFound:
        raise HTTPException(status_code=404, detail="Two-factor is not enabled")
    return {"verified": check.verified, "used_backup_code": check.used_backup_code}


@router.get("/two-factor/status")
async def two_factor_status(
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    return await services.two_factor.status(principal.id)


@router.post("/two-factor/backup-codes")
async def regenerate_backup_codes(
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    try:
        codes = await services.two_factor.regenerate_backup_codes(principal.id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Two-factor is not enabled")
    return {"backup_codes": codes}
