"""Tests for secret-protected resources and their throttle."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from api.services.access_sessions import AccessSessionManager
from api.services.attempt_ledger import AttemptLedger
from api.services.errors import NotFound, PermissionDenied, StoreUnavailable
from api.services.secret_gate import SecretGate
from api.services.security_audit import SecurityAuditLog
from sqlalchemy import func, select
from warden.models import AccessSession, AuthAttempt, SecurityAuditEvent
from warden.models.enums import SecurityEventType
from warden.services.security_policy import ResourceSecretSettings, SecurityPolicy, StoreSettings


async def _wrong(gate: SecretGate, times: int, principal_id: str = "p1"):
    result = None
    for _ in range(times):
        result = await gate.verify("room", "wrong", principal_id)
    return result


class TestSecretGate:
    async def test_unprotected_resource_is_open(self, services, db):
        result = await services.gate.verify("R1", "anything", "P1")

        assert result.granted is True
        assert result.session_token is None
        assert await services.sessions.has_access("R1", "P1") is True
        sessions = (await db.execute(select(func.count()).select_from(AccessSession))).scalar()
        assert sessions == 0

    async def test_correct_secret_grants_session(self, services):
        await services.gate.set_secret("room", "hunter2", "owner")

        result = await services.gate.verify("room", "hunter2", "p1", "laptop")
        assert result.granted is True
        assert result.session_token
        assert await services.sessions.has_access(
            "room", "p1", token=result.session_token, device_fingerprint="laptop"
        )

    async def test_wrong_secret_reports_remaining_attempts(self, services):
        await services.gate.set_secret("room", "hunter2", "owner")

        remaining = [(await _wrong(services.gate, 1)).remaining_attempts for _ in range(3)]
        assert remaining == [2, 1, 0]

    async def test_throttle_beats_a_correct_late_secret(self, services, clock):
        await services.gate.set_secret("room", "hunter2", "owner")
        await _wrong(services.gate, 3)
        last_failure = clock()

        clock.advance(seconds=10)
        result = await services.gate.verify("room", "hunter2", "p1")

        assert result.granted is False
        assert result.remaining_attempts == 0
        assert result.locked_until == last_failure + timedelta(seconds=300)
        assert await services.sessions.has_access("room", "p1") is False

    async def test_throttle_is_per_principal(self, services):
        await services.gate.set_secret("room", "hunter2", "owner")
        await _wrong(services.gate, 3, principal_id="p1")

        result = await services.gate.verify("room", "hunter2", "p2")
        assert result.granted is True

    async def test_hammering_does_not_extend_the_throttle(self, services, clock, db):
        await services.gate.set_secret("room", "hunter2", "owner")
        await _wrong(services.gate, 3)
        locked_until = clock() + timedelta(seconds=300)

        for _ in range(5):
            clock.advance(seconds=50)
            result = await services.gate.verify("room", "hunter2", "p1")
            assert result.granted is False
            assert result.locked_until == locked_until

        clock.now = locked_until + timedelta(seconds=1)
        result = await services.gate.verify("room", "hunter2", "p1")
        assert result.granted is True

        refused = (
            await db.execute(
                select(func.count())
                .select_from(AuthAttempt)
                .where(AuthAttempt.failure_reason == "locked")
            )
        ).scalar()
        assert refused == 5

    async def test_throttle_lapses_after_window(self, services, clock):
        await services.gate.set_secret("room", "hunter2", "owner")
        await _wrong(services.gate, 3)

        clock.advance(seconds=301)
        result = await services.gate.verify("room", "wrong", "p1")
        assert result.granted is False
        assert result.remaining_attempts == 2
        assert result.locked_until is None

    async def test_set_secret_revokes_existing_sessions(self, services):
        await services.gate.set_secret("room", "hunter2", "owner")
        first = await services.gate.verify("room", "hunter2", "p1")
        assert await services.sessions.has_access("room", "p1", token=first.session_token)

        await services.gate.set_secret("room", "correct-horse", "owner", hint="battery")

        assert await services.sessions.has_access("room", "p1", token=first.session_token) is False
        assert await services.sessions.has_access("room", "p1") is False
        assert (await services.gate.verify("room", "hunter2", "p1")).granted is False
        assert (await services.gate.verify("room", "correct-horse", "p1")).granted is True

    async def test_set_secret_is_audited_without_the_secret(self, services, db):
        await services.gate.set_secret("room", "hunter2", "owner", hint="pet")

        event = (
            await db.execute(
                select(SecurityAuditEvent).where(
                    SecurityAuditEvent.event_type == SecurityEventType.CONVERSATION_PASSWORD_SET
                )
            )
        ).scalars().one()
        assert event.event_data["resource_id"] == "room"
        assert event.event_data["has_hint"] is True
        assert "hunter2" not in str(event.event_data)

    async def test_resource_settings_come_from_policy(self, db, hasher, clock):
        policy = SecurityPolicy(
            resource_secret=ResourceSecretSettings(
                max_attempts=1, lockout_window_seconds=60, hash_rounds=4
            )
        )
        ledger = AttemptLedger(db, policy, clock=clock)
        audit = SecurityAuditLog(db, policy, clock=clock)
        sessions = AccessSessionManager(db, policy, clock=clock)
        gate = SecretGate(db, policy, hasher, ledger, sessions, audit, clock=clock)

        await gate.set_secret("room", "hunter2", "owner")
        first = await gate.verify("room", "wrong", "p1")
        assert first.remaining_attempts == 0
        second = await gate.verify("room", "hunter2", "p1")
        assert second.locked_until == clock() + timedelta(seconds=60)

    async def test_remove_secret_is_creator_only(self, services):
        await services.gate.set_secret("room", "hunter2", "owner")
        granted = await services.gate.verify("room", "hunter2", "p1")

        with pytest.raises(PermissionDenied):
            await services.gate.remove_secret("room", "p1")

        await services.gate.remove_secret("room", "owner")
        assert await services.gate.is_protected("room") is False
        assert await services.sessions.has_access("room", "p1") is True
        assert granted.session_token

        with pytest.raises(NotFound):
            await services.gate.remove_secret("room", "owner")

    async def test_only_the_creator_can_replace_the_secret(self, services):
        await services.gate.set_secret("room", "hunter2", "owner")
        owner_session = await services.gate.verify("room", "hunter2", "owner")
        await _wrong(services.gate, 3, principal_id="mallory")

        with pytest.raises(PermissionDenied):
            await services.gate.set_secret("room", "mine", "mallory")

        assert await services.sessions.has_access(
            "room", "owner", token=owner_session.session_token
        )
        assert (await services.gate.verify("room", "mine", "mallory")).granted is False
        assert (await services.gate.verify("room", "hunter2", "owner")).granted is True

    async def test_hint_lookup(self, services):
        await services.gate.set_secret("room", "hunter2", "owner", hint="pet name")
        assert await services.gate.get_hint("room") == "pet name"
        with pytest.raises(NotFound):
            await services.gate.get_hint("missing")

    async def test_overlong_secret_is_rejected_on_set(self, services):
        with pytest.raises(ValueError):
            await services.gate.set_secret("room", "x" * 73, "owner")

    async def test_hash_timeout_fails_closed(self, db, clock):
        class SlowHasher:
            async def hash(self, secret):
                return "hash", "salt"

            async def compare(self, secret, hashed):
                await asyncio.sleep(1)
                return True

        policy = SecurityPolicy(store=StoreSettings(timeout_seconds=0.05))
        ledger = AttemptLedger(db, policy, clock=clock)
        audit = SecurityAuditLog(db, policy, clock=clock)
        sessions = AccessSessionManager(db, policy, clock=clock)
        gate = SecretGate(db, policy, SlowHasher(), ledger, sessions, audit, clock=clock)
        await gate.set_secret("room", "hunter2", "owner")

        with pytest.raises(StoreUnavailable):
            await gate.verify("room", "hunter2", "p1")
        assert await sessions.has_access("room", "p1") is False
