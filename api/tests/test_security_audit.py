"""Tests for the security audit trail and suspicion heuristic."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

from api.services.security_audit import (
    MULTIPLE_LOCATIONS_REASON,
    RAPID_FAILURES_REASON,
    AuditQuery,
    SecurityAuditLog,
)
from api.services.security_services import apply_suspicion, build_security_services
from sqlalchemy.exc import OperationalError
from warden.models.enums import SecurityEventType, Severity
from warden.services.security_policy import SecurityPolicy, SuspicionSettings


class TestAuditLog:
    async def test_list_filters_and_orders_newest_first(self, services, clock):
        audit = services.audit
        await audit.log("alice", SecurityEventType.LOGIN_SUCCESS, {}, Severity.LOW)
        clock.advance(minutes=1)
        await audit.log("alice", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)
        clock.advance(minutes=1)
        await audit.log("alice", SecurityEventType.ACCOUNT_LOCKED, {}, Severity.HIGH)
        await audit.log("bob", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)

        events, total = await audit.list_events(AuditQuery(principal_id="alice"))
        assert total == 3
        assert [e.event_type for e in events] == [
            SecurityEventType.ACCOUNT_LOCKED,
            SecurityEventType.LOGIN_FAILURE,
            SecurityEventType.LOGIN_SUCCESS,
        ]

        events, total = await audit.list_events(
            AuditQuery(principal_id="alice", severities=[Severity.MEDIUM, Severity.HIGH], limit=1)
        )
        assert total == 2
        assert len(events) == 1

        events, total = await audit.list_events(
            AuditQuery(
                event_types=[SecurityEventType.LOGIN_FAILURE],
                date_from=clock() - timedelta(seconds=90),
            )
        )
        assert total == 2
        assert {e.principal_id for e in events} == {"alice", "bob"}

    async def test_write_failure_is_absorbed(self, clock):
        db = MagicMock()
        db.begin_nested.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        audit = SecurityAuditLog(db, SecurityPolicy(), clock=clock)

        await audit.log("alice", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)

    async def test_stats(self, services, clock):
        audit = services.audit
        await audit.log("alice", SecurityEventType.LOGIN_SUCCESS, {}, Severity.LOW)
        clock.advance(hours=1)
        await audit.log("alice", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)
        await audit.log("alice", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)

        stats = await audit.stats("alice")
        assert stats["total_events"] == 3
        assert stats["by_severity"]["medium"] == 2
        assert stats["by_severity"]["critical"] == 0
        assert stats["recent_failed_logins"] == 2
        assert stats["last_login_failure"] == clock().isoformat()

    async def test_erase_principal(self, services):
        await services.audit.log("alice", SecurityEventType.LOGIN_SUCCESS, {}, Severity.LOW)
        await services.audit.log("bob", SecurityEventType.LOGIN_SUCCESS, {}, Severity.LOW)

        assert await services.audit.erase_principal("alice") == 1
        _, total = await services.audit.list_events(AuditQuery())
        assert total == 1


class TestSuspicionHeuristic:
    async def test_quiet_history_is_not_suspicious(self, services):
        await services.audit.log(
            "alice", SecurityEventType.LOGIN_SUCCESS, {}, Severity.LOW, origin_fingerprint="home"
        )
        verdict = await services.suspicion.evaluate("alice", "home")
        assert verdict.suspicious is False

    async def test_many_origins_in_an_hour(self, services):
        for origin in ("home", "office", "cafe"):
            await services.audit.log(
                "alice",
                SecurityEventType.LOGIN_SUCCESS,
                {},
                Severity.LOW,
                origin_fingerprint=origin,
            )

        verdict = await services.suspicion.evaluate("alice", "cafe")
        assert verdict.suspicious is True
        assert verdict.reasons == [MULTIPLE_LOCATIONS_REASON]
        _, total = await services.audit.list_events(
            AuditQuery(principal_id="alice", event_types=[SecurityEventType.SUSPICIOUS_ACTIVITY])
        )
        assert total == 1

    async def test_old_origins_are_ignored(self, services, clock):
        for origin in ("home", "office"):
            await services.audit.log(
                "alice", SecurityEventType.LOGIN_SUCCESS, {}, Severity.LOW, origin_fingerprint=origin
            )
        clock.advance(minutes=61)
        await services.audit.log(
            "alice", SecurityEventType.LOGIN_SUCCESS, {}, Severity.LOW, origin_fingerprint="cafe"
        )
        assert (await services.suspicion.evaluate("alice", "cafe")).suspicious is False

    async def test_rapid_failures(self, services):
        for _ in range(4):
            await services.audit.log("alice", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)

        verdict = await services.suspicion.evaluate("alice")
        assert verdict.reasons == [RAPID_FAILURES_REASON]

    async def test_detection_does_not_lock_by_default(self, services):
        for _ in range(4):
            await services.audit.log("alice", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)

        verdict = await apply_suspicion(services, "alice", None)
        assert verdict.suspicious is True
        assert (await services.lockouts.is_locked("alice")).locked is False

    async def test_detection_can_lock_when_enabled(self, db, hasher, clock):
        policy = SecurityPolicy(suspicion=SuspicionSettings(lock_on_detection=True))
        services = build_security_services(db, policy, hasher=hasher, clock=clock)
        for _ in range(4):
            await services.audit.log("alice", SecurityEventType.LOGIN_FAILURE, {}, Severity.MEDIUM)

        await apply_suspicion(services, "alice", None)
        status = await services.lockouts.is_locked("alice")
        assert status.locked is True
        assert status.lockout.reason.value == "suspicious_activity"
