"""Tests for TOTP two-factor enrollment."""

from __future__ import annotations

import pyotp
import pytest
from api.services.errors import NotFound
from api.services.maintenance import run_security_cleanup
from api.services.security_audit import AuditQuery
from api.services.two_factor import BACKUP_CODE_COUNT
from cryptography.fernet import Fernet
from sqlalchemy import select
from warden.config import get_settings, reset_settings_cache
from warden.models import TwoFactorEnrollment
from warden.models.enums import SecurityEventType
from warden.services.encryption import reset_fernet


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
    reset_settings_cache()
    reset_fernet()
    yield
    reset_settings_cache()
    reset_fernet()


async def _enroll(services, principal_id: str = "alice") -> tuple[str, list[str]]:
    setup = services.two_factor.begin_enrollment(principal_id)
    codes = await services.two_factor.enable(
        principal_id, setup.secret, pyotp.TOTP(setup.secret).now()
    )
    return setup.secret, codes


class TestTwoFactor:
    def test_enrollment_uri(self, services):
        setup = services.two_factor.begin_enrollment("alice")
        assert setup.provisioning_uri.startswith("otpauth://totp/")
        assert "issuer=Warden" in setup.provisioning_uri

    async def test_enable_rejects_wrong_code(self, services):
        setup = services.two_factor.begin_enrollment("alice")
        assert await services.two_factor.enable("alice", setup.secret, "000000x") is None
        assert (await services.two_factor.status("alice"))["enabled"] is False

    async def test_enable_then_verify_totp(self, services):
        secret, codes = await _enroll(services)
        assert len(codes) == BACKUP_CODE_COUNT
        assert all(len(code) == 8 and code.isdigit() for code in codes)

        check = await services.two_factor.verify("alice", pyotp.TOTP(secret).now())
        assert check.verified is True
        assert check.used_backup_code is False

        _, total = await services.audit.list_events(
            AuditQuery(principal_id="alice", event_types=[SecurityEventType.TWO_FACTOR_ENABLED])
        )
        assert total == 1

    async def test_backup_codes_are_single_use(self, services):
        _, codes = await _enroll(services)

        first = await services.two_factor.verify("alice", codes[0])
        assert first.verified is True
        assert first.used_backup_code is True
        assert (await services.two_factor.verify("alice", codes[0])).verified is False
        status = await services.two_factor.status("alice")
        assert status["backup_codes_remaining"] == BACKUP_CODE_COUNT - 1

    async def test_secret_is_encrypted_at_rest(self, services, db):
        secret, _ = await _enroll(services)
        enrollment = (
            await db.execute(
                select(TwoFactorEnrollment).where(TwoFactorEnrollment.principal_id == "alice")
            )
        ).scalars().one()
        assert enrollment.secret != secret

    async def test_disable(self, services):
        await _enroll(services)
        await services.two_factor.disable("alice")

        assert (await services.two_factor.status("alice"))["enabled"] is False
        with pytest.raises(NotFound):
            await services.two_factor.verify("alice", "123456")
        with pytest.raises(NotFound):
            await services.two_factor.disable("alice")

    async def test_regenerate_backup_codes(self, services):
        _, old_codes = await _enroll(services)
        new_codes = await services.two_factor.regenerate_backup_codes("alice")

        assert (await services.two_factor.verify("alice", old_codes[0])).verified is False
        assert (await services.two_factor.verify("alice", new_codes[0])).verified is True

    async def test_verify_without_enrollment(self, services):
        with pytest.raises(NotFound):
            await services.two_factor.verify("nobody", "123456")

    async def test_secret_survives_key_rotation(self, services, db, policy, clock, monkeypatch):
        secret, _ = await _enroll(services)
        old_key = get_settings().encryption_key
        new_key = Fernet.generate_key().decode()

        monkeypatch.setenv("ENCRYPTION_KEY", f"{new_key},{old_key}")
        reset_settings_cache()
        reset_fernet()
        check = await services.two_factor.verify("alice", pyotp.TOTP(secret).now())
        assert check.verified is True

        summary = await run_security_cleanup(db, policy, clock=clock)
        assert summary["two_factor_secrets_rotated"] == 1

        monkeypatch.setenv("ENCRYPTION_KEY", new_key)
        reset_settings_cache()
        reset_fernet()
        check = await services.two_factor.verify("alice", pyotp.TOTP(secret).now())
        assert check.verified is True

    async def test_cleanup_leaves_secrets_alone_with_one_key(self, services, db, policy, clock):
        await _enroll(services)
        before = (await db.execute(select(TwoFactorEnrollment.secret))).scalar_one()

        summary = await run_security_cleanup(db, policy, clock=clock)

        assert summary["two_factor_secrets_rotated"] == 0
        assert (await db.execute(select(TwoFactorEnrollment.secret))).scalar_one() == before
