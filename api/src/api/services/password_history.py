"""Password reuse history and strength scoring."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import PasswordHistoryEntry
from warden.models.enums import SecurityEventType, Severity
from warden.services.security_policy import SecurityPolicy

from api.services.secret_hashing import SecretHasher
from api.services.security_audit import SecurityAuditLog
from api.services.store import Clock, store_call, utc_now

logger = logging.getLogger(__name__)

HISTORY_DEPTH = 10
MIN_LENGTH = 8
STRONG_LENGTH = 12

_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")
_REPEAT_RE = re.compile(r"(.)\1{2,}")
_SEQUENCE_RE = re.compile(r"123|abc|qwe|asd|zxc", re.IGNORECASE)


@dataclass
class PasswordStrength:
    is_valid: bool
    score: int
    feedback: list[str] = field(default_factory=list)


def validate_password_strength(password: str) -> PasswordStrength:
    feedback: list[str] = []
    score = 0

    if len(password) < MIN_LENGTH:
        feedback.append(f"Password must be at least {MIN_LENGTH} characters long")
    else:
        score += 1
    if len(password) >= STRONG_LENGTH:
        score += 1

    for pattern, message in (
        (r"[a-z]", "Password must contain lowercase letters"),
        (r"[A-Z]", "Password must contain uppercase letters"),
        (r"\d", "Password must contain numbers"),
    ):
        if re.search(pattern, password):
            score += 1
        else:
            feedback.append(message)
    if _SPECIAL_RE.search(password):
        score += 1
    else:
        feedback.append("Password must contain special characters")

    if _REPEAT_RE.search(password):
        score -= 1
        feedback.append("Avoid repeating characters")
    if _SEQUENCE_RE.search(password):
        score -= 1
        feedback.append("Avoid common sequences")

    return PasswordStrength(
        is_valid=score >= 4 and not feedback,
        score=max(0, min(5, score)),
        feedback=feedback,
    )


class PasswordHistory:
    def __init__(
        self,
        db: AsyncSession,
        policy: SecurityPolicy,
        hasher: SecretHasher,
        audit: SecurityAuditLog,
        *,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.policy = policy
        self.hasher = hasher
        self.audit = audit
        self._clock = clock

    def _store(self, operation: str):
        return store_call(operation, self.policy.store.timeout_seconds)

    async def _recent(self, principal_id: str) -> list[PasswordHistoryEntry]:
        result = await self.db.execute(
            select(PasswordHistoryEntry)
            .where(PasswordHistoryEntry.principal_id == principal_id)
            .order_by(PasswordHistoryEntry.created_at.desc())
        )
        return list(result.scalars().all())

    async def is_reused(self, principal_id: str, password: str) -> bool:
        async with self._store("load password history"):
            entries = (await self._recent(principal_id))[:HISTORY_DEPTH]
        for entry in entries:
            async with self._store("compare password history"):
                if await self.hasher.compare(password, entry.password_hash):
                    return True
        return False

    async def save(self, principal_id: str, password: str) -> PasswordHistoryEntry:
        """Remember a new password; only the most recent entries are kept."""
        async with self._store("hash password"):
            password_hash, _ = await self.hasher.hash(password)
        entry = PasswordHistoryEntry(
            principal_id=principal_id,
            password_hash=password_hash,
            created_at=self._clock(),
        )
        async with self._store("save password history"):
            self.db.add(entry)
            await self.db.flush()
            stale = (await self._recent(principal_id))[HISTORY_DEPTH:]
            if stale:
                await self.db.execute(
                    delete(PasswordHistoryEntry).where(
                        PasswordHistoryEntry.id.in_([row.id for row in stale])
                    )
                )
        await self.audit.log(principal_id, SecurityEventType.PASSWORD_CHANGED, {}, Severity.MEDIUM)
        return entry

    async def count(self, principal_id: str) -> int:
        async with self._store("count password history"):
            result = await self.db.execute(
                select(func.count())
                .select_from(PasswordHistoryEntry)
                .where(PasswordHistoryEntry.principal_id == principal_id)
            )
            return int(result.scalar() or 0)

    async def clear(self, principal_id: str) -> int:
        async with self._store("clear password history"):
            result = await self.db.execute(
                delete(PasswordHistoryEntry).where(
                    PasswordHistoryEntry.principal_id == principal_id
                )
            )
        deleted = int(result.rowcount or 0)
        logger.info("Cleared %d password history entries for principal %s", deleted, principal_id)
        return deleted
