"""TOTP two-factor enrollment and verification."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass

import pyotp
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import TwoFactorEnrollment
from warden.models.enums import SecurityEventType, Severity
from warden.services.encryption import InvalidToken, decrypt_value, encrypt_value, rotate_value
from warden.services.security_policy import SecurityPolicy

from api.services.errors import NotFound
from api.services.security_audit import SecurityAuditLog
from api.services.store import Clock, store_call, utc_now

logger = logging.getLogger(__name__)

ISSUER_NAME = "Warden"
BACKUP_CODE_COUNT = 8
BACKUP_CODE_DIGITS = 8


@dataclass
class EnrollmentSetup:
    secret: str
    provisioning_uri: str


@dataclass
class TwoFactorCheck:
    verified: bool
    used_backup_code: bool = False


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> list[str]:
    return [
        "".join(secrets.choice("0123456789") for _ in range(BACKUP_CODE_DIGITS))
        for _ in range(count)
    ]


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(code.strip().encode()).hexdigest()


class TwoFactorService:
    def __init__(
        self,
        db: AsyncSession,
        policy: SecurityPolicy,
        audit: SecurityAuditLog,
        *,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.policy = policy
        self.audit = audit
        self._clock = clock

    def _store(self, operation: str):
        return store_call(operation, self.policy.store.timeout_seconds)

    async def _load(self, principal_id: str) -> TwoFactorEnrollment | None:
        async with self._store("load two-factor enrollment"):
            result = await self.db.execute(
                select(TwoFactorEnrollment).where(TwoFactorEnrollment.principal_id == principal_id)
            )
            return result.scalars().first()

    def begin_enrollment(self, principal_id: str) -> EnrollmentSetup:
        secret = pyotp.random_base32()
        uri = pyotp.totp.TOTP(secret).provisioning_uri(name=principal_id, issuer_name=ISSUER_NAME)
        return EnrollmentSetup(secret=secret, provisioning_uri=uri)

    async def enable(self, principal_id: str, secret: str, code: str) -> list[str] | None:
        """Turn on two-factor once the first code checks out.

        Returns the plaintext backup codes, which are never retrievable again,
        or None when the code is wrong.
        """
        if not pyotp.TOTP(secret).verify(code, valid_window=1):
            return None

        codes = generate_backup_codes()
        now = self._clock()
        enrollment = await self._load(principal_id)
        async with self._store("enable two-factor"):
            if enrollment is None:
                enrollment = TwoFactorEnrollment(principal_id=principal_id)
                self.db.add(enrollment)
            enrollment.secret = encrypt_value(secret)
            enrollment.backup_code_hashes = [hash_backup_code(c) for c in codes]
            enrollment.is_enabled = True
            enrollment.enabled_at = now
            enrollment.updated_at = now
            await self.db.flush()

        logger.info("Two-factor enabled for principal %s", principal_id)
        await self.audit.log(
            principal_id, SecurityEventType.TWO_FACTOR_ENABLED, {}, Severity.MEDIUM
        )
        return codes

    async def disable(self, principal_id: str) -> None:
        enrollment = await self._load(principal_id)
        if enrollment is None or not enrollment.is_enabled:
            raise NotFound(f"Two-factor is not enabled for {principal_id}")
        async with self._store("disable two-factor"):
            enrollment.is_enabled = False
            enrollment.backup_code_hashes = []
            enrollment.updated_at = self._clock()
            await self.db.flush()
        logger.info("Two-factor disabled for principal %s", principal_id)
        await self.audit.log(
            principal_id, SecurityEventType.TWO_FACTOR_DISABLED, {}, Severity.HIGH
        )

    async def verify(self, principal_id: str, code: str) -> TwoFactorCheck:
        enrollment = await self._load(principal_id)
        if enrollment is None or not enrollment.is_enabled:
            raise NotFound(f"Two-factor is not enabled for {principal_id}")

        if pyotp.TOTP(decrypt_value(enrollment.secret)).verify(code, valid_window=1):
            return TwoFactorCheck(verified=True)

        candidate = hash_backup_code(code)
        remaining = list(enrollment.backup_code_hashes or [])
        for index, stored in enumerate(remaining):
            if hmac.compare_digest(candidate, stored):
                # Backup codes are single use.
                del remaining[index]
                async with self._store("consume backup code"):
                    enrollment.backup_code_hashes = remaining
                    enrollment.updated_at = self._clock()
                    await self.db.flush()
                logger.info(
                    "Backup code used by principal %s (%d left)", principal_id, len(remaining)
                )
                return TwoFactorCheck(verified=True, used_backup_code=True)
        return TwoFactorCheck(verified=False)

    async def status(self, principal_id: str) -> dict:
        enrollment = await self._load(principal_id)
        if enrollment is None or not enrollment.is_enabled:
            return {"enabled": False, "backup_codes_remaining": 0}
        return {
            "enabled": True,
            "backup_codes_remaining": len(enrollment.backup_code_hashes or []),
        }

    async def regenerate_backup_codes(self, principal_id: str) -> list[str]:
        enrollment = await self._load(principal_id)
        if enrollment is None or not enrollment.is_enabled:
            raise NotFound(f"Two-factor is not enabled for {principal_id}")
        codes = generate_backup_codes()
        async with self._store("regenerate backup codes"):
            enrollment.backup_code_hashes = [hash_backup_code(c) for c in codes]
            enrollment.updated_at = self._clock()
            await self.db.flush()
        return codes

    async def reencrypt_secrets(self) -> int:
        """Move every stored TOTP secret onto the primary encryption key."""
        async with self._store("load two-factor secrets"):
            result = await self.db.execute(select(TwoFactorEnrollment))
            enrollments = list(result.scalars().all())

        rotated = 0
        for enrollment in enrollments:
            try:
                enrollment.secret = rotate_value(enrollment.secret)
            except InvalidToken:
                logger.warning(
                    "Two-factor secret for principal %s matches no configured key",
                    enrollment.principal_id,
                )
                continue
            enrollment.updated_at = self._clock()
            rotated += 1
        async with self._store("save rotated two-factor secrets"):
            await self.db.flush()
        return rotated
