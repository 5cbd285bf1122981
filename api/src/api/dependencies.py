"""FastAPI dependency injection."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from warden.database import get_session_factory
from warden.services.security_policy import SecurityPolicy, load_security_policy

from api.middleware.auth import ROLE_ADMIN, ROLE_SERVICE, ROLE_USER, decode_access_token
from api.services.security_services import SecurityServices, build_security_services
from api.services.store import fingerprint

ROLE_LEVELS = {
    ROLE_USER: 10,
    ROLE_SERVICE: 20,
    ROLE_ADMIN: 30,
}


@dataclass(frozen=True)
class Principal:
    id: str
    role: str = ROLE_USER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_policy() -> SecurityPolicy:
    return load_security_policy()


def get_security_services(
    db: AsyncSession = Depends(get_db),
    policy: SecurityPolicy = Depends(get_policy),
) -> SecurityServices:
    return build_security_services(db, policy)


def _extract_bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        token = auth[7:].strip()
        return token or None
    return None


def _decode_token(request: Request) -> dict:
    raw_token = _extract_bearer_token(request)
    if not raw_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    try:
        payload = decode_access_token(raw_token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload


async def get_current_principal(request: Request) -> Principal:
    payload = _decode_token(request)
    principal_id = str(payload.get("sub", "")).strip()
    if not principal_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    role = str(payload.get("role", ROLE_USER)).strip().lower() or ROLE_USER
    if role not in ROLE_LEVELS:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid role")
    return Principal(id=principal_id, role=role)


def _require_level(principal: Principal, role: str) -> Principal:
    if ROLE_LEVELS[principal.role] < ROLE_LEVELS[role]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient role permissions",
        )
    return principal


def require_service(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Auth backends report login attempts; end users may not."""
    return _require_level(principal, ROLE_SERVICE)


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    return _require_level(principal, ROLE_ADMIN)


def ensure_can_read(
    principal: Principal, principal_id: str, *, allow_service: bool = False
) -> None:
    if principal.id == principal_id or principal.is_admin:
        return
    if allow_service and principal.role == ROLE_SERVICE:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Cannot read another principal's security data",
    )


def request_origin(request: Request) -> str | None:
    """Short fingerprint of the client address; the raw address is not stored."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    host = forwarded.split(",")[0].strip() if forwarded else ""
    if not host and request.client is not None:
        host = request.client.host
    return fingerprint(host) if host else None
