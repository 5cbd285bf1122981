"""Access sessions for secret-protected resources."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy import delete, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import AccessSession, ResourceSecret
from warden.services.security_policy import SecurityPolicy

from api.services.store import Clock, fingerprint, store_call, utc_now

logger = logging.getLogger(__name__)

# 32 bytes -> 256 bits of entropy.
TOKEN_BYTES = 32


def generate_session_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class AccessSessionManager:
    """Issues, checks and revokes device-scoped resource sessions.

    Expiry is a computed predicate: a session past expires_at never grants
    access, whether or not is_active was ever cleared.
    """

    def __init__(self, db: AsyncSession, policy: SecurityPolicy, *, clock: Clock = utc_now):
        self.db = db
        self.policy = policy
        self._clock = clock

    def _store(self, operation: str):
        return store_call(operation, self.policy.store.timeout_seconds)

    def _supersede(self, resource_id: str, principal_id: str, device_fingerprint: str | None):
        device_match = (
            AccessSession.device_fingerprint.is_(None)
            if device_fingerprint is None
            else AccessSession.device_fingerprint == device_fingerprint
        )
        return (
            update(AccessSession)
            .where(
                AccessSession.resource_id == resource_id,
                AccessSession.principal_id == principal_id,
                AccessSession.is_active.is_(True),
                device_match,
            )
            .values(is_active=False, invalidated_at=self._clock())
            .execution_options(synchronize_session="fetch")
        )

    async def issue(
        self,
        resource_id: str,
        principal_id: str,
        device_fingerprint: str | None = None,
        ttl: timedelta | None = None,
    ) -> AccessSession:
        now = self._clock()
        ttl = ttl or self.policy.access_session.ttl
        session = AccessSession(
            resource_id=resource_id,
            principal_id=principal_id,
            device_fingerprint=device_fingerprint,
            token=generate_session_token(),
            issued_at=now,
            expires_at=now + ttl,
            is_active=True,
        )
        async with self._store("issue access session"):
            # A racing issuer for the same tuple can win between the update and
            # the insert; supersede again and retry once.
            for attempt in range(2):
                await self.db.execute(
                    self._supersede(resource_id, principal_id, device_fingerprint)
                )
                try:
                    async with self.db.begin_nested():
                        self.db.add(session)
                    break
                except IntegrityError:
                    if attempt:
                        raise
                    logger.info(
                        "Concurrent access session for %s/%s; superseding",
                        resource_id,
                        principal_id,
                    )
                    session = AccessSession(
                        resource_id=resource_id,
                        principal_id=principal_id,
                        device_fingerprint=device_fingerprint,
                        token=generate_session_token(),
                        issued_at=now,
                        expires_at=now + ttl,
                        is_active=True,
                    )
        logger.info(
            "Issued access session %s for resource %s (principal=%s, expires=%s)",
            fingerprint(session.token),
            resource_id,
            principal_id,
            session.expires_at.isoformat(),
        )
        return session

    async def has_access(
        self,
        resource_id: str,
        principal_id: str,
        token: str | None = None,
        device_fingerprint: str | None = None,
    ) -> bool:
        now = self._clock()
        async with self._store("check resource access"):
            protected = (
                await self.db.execute(
                    select(exists().where(ResourceSecret.resource_id == resource_id))
                )
            ).scalar()
            if not protected:
                return True

            query = select(AccessSession.id).where(
                AccessSession.resource_id == resource_id,
                AccessSession.principal_id == principal_id,
                AccessSession.is_active.is_(True),
                AccessSession.expires_at > now,
            )
            if token:
                query = query.where(AccessSession.token == token)
            if device_fingerprint:
                query = query.where(AccessSession.device_fingerprint == device_fingerprint)
            found = (await self.db.execute(query.limit(1))).scalars().first()
        return found is not None

    async def invalidate_all(self, resource_id: str) -> int:
        async with self._store("invalidate access sessions"):
            result = await self.db.execute(
                update(AccessSession)
                .where(
                    AccessSession.resource_id == resource_id,
                    AccessSession.is_active.is_(True),
                )
                .values(is_active=False, invalidated_at=self._clock())
                .execution_options(synchronize_session="fetch")
            )
        invalidated = int(result.rowcount or 0)
        if invalidated:
            logger.info(
                "Invalidated %d access session(s) for resource %s", invalidated, resource_id
            )
        return invalidated

    async def invalidate(self, token: str, principal_id: str) -> bool:
        """Explicit logout of one session; only its owner may end it."""
        async with self._store("invalidate access session"):
            result = await self.db.execute(
                update(AccessSession)
                .where(
                    AccessSession.token == token,
                    AccessSession.principal_id == principal_id,
                    AccessSession.is_active.is_(True),
                )
                .values(is_active=False, invalidated_at=self._clock())
                .execution_options(synchronize_session="fetch")
            )
        return bool(result.rowcount)

    async def prune_expired(self, before: datetime) -> int:
        """Storage reclamation; has_access never relies on it."""
        async with self._store("prune access sessions"):
            result = await self.db.execute(
                delete(AccessSession).where(AccessSession.expires_at < before)
            )
        return int(result.rowcount or 0)
