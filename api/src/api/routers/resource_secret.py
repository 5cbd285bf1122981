"""Password-protected resource endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from api.dependencies import (
    Principal,
    get_current_principal,
    get_security_services,
    request_origin,
)
from api.services.errors import NotFound, PermissionDenied
from api.services.secret_hashing import MAX_SECRET_BYTES
from api.services.security_services import SecurityServices

logger = logging.getLogger(__name__)
router = APIRouter()


class ResourceRequest(BaseModel):
    resource_id: str = Field(min_length=1, max_length=128)


class SetSecretRequest(ResourceRequest):
    secret: str = Field(min_length=1, max_length=MAX_SECRET_BYTES)
    hint: str | None = Field(default=None, max_length=200)


class VerifySecretRequest(ResourceRequest):
    secret: str = Field(min_length=1, max_length=256)
    device_fingerprint: str | None = Field(default=None, max_length=128)


class LogoutRequest(BaseModel):
    token: str = Field(min_length=16, max_length=256)


@router.post("/resource-secret/set")
async def set_resource_secret(
    req: SetSecretRequest,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    try:
        await services.gate.set_secret(req.resource_id, req.secret, principal.id, req.hint)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return {"ok": True}


@router.post("/resource-secret/verify")
async def verify_resource_secret(
    req: VerifySecretRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    result = await services.gate.verify(
        req.resource_id,
        req.secret,
        principal.id,
        req.device_fingerprint,
        origin_fingerprint=request_origin(request),
    )
    return {
        "granted": result.granted,
        "session_token": result.session_token,
        "remaining_attempts": result.remaining_attempts,
        "locked_until": result.locked_until.isoformat() if result.locked_until else None,
    }


@router.get("/resource-secret/access")
async def check_resource_access(
    resource_id: str = Query(min_length=1, max_length=128),
    token: str | None = Query(default=None, max_length=256),
    device_fingerprint: str | None = Query(default=None, max_length=128),
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    granted = await services.sessions.has_access(
        resource_id, principal.id, token=token, device_fingerprint=device_fingerprint
    )
    return {"granted": granted}


@router.post("/resource-secret/remove")
async def remove_resource_secret(
    req: ResourceRequest,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    try:
        await services.gate.remove_secret(req.resource_id, principal.id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Resource is not protected")
    except PermissionDenied as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    return {"ok": True}


@router.get("/resource-secret/hint")
async def get_resource_hint(
    resource_id: str = Query(min_length=1, max_length=128),
    _: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    try:
        hint = await services.gate.get_hint(resource_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Resource is not protected")
    return {"hint": hint}


@router.post("/resource-secret/logout")
async def logout_resource_session(
    req: LogoutRequest,
    principal: Principal = Depends(get_current_principal),
    services: SecurityServices = Depends(get_security_services),
):
    await services.sessions.invalidate(req.token, principal.id)
    return {"ok": True}
