"""JWT bearer tokens identifying the calling principal."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import jwt
from warden.config import get_settings

ROLE_USER = "user"
ROLE_SERVICE = "service"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_SERVICE, ROLE_ADMIN)


def create_access_token(
    principal_id: str,
    role: str = ROLE_USER,
    expires_delta: timedelta | None = None,
) -> str:
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role}")
    settings = get_settings()
    lifetime = expires_delta or timedelta(minutes=settings.jwt_expire_minutes)
    expire = datetime.now(timezone.utc) + lifetime
    payload = {
        "sub": principal_id,
        "exp": expire,
        "role": role,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)

def decode_access_token(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
