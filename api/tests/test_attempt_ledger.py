"""Tests for the attempt ledger's sliding-window queries."""

from __future__ import annotations

from datetime import timedelta

from api.services.attempt_ledger import LOCKED_FAILURE_REASON, AttemptLedger
from warden.models.enums import AttemptOutcome, SubjectKind


class TestAttemptLedger:
    async def test_counts_only_failures_inside_window(self, db, policy, clock):
        ledger = AttemptLedger(db, policy, clock=clock)
        await ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.FAILURE)
        clock.advance(minutes=10)
        await ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.FAILURE)
        await ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.SUCCESS)
        clock.advance(minutes=6)

        window = timedelta(minutes=15)
        assert await ledger.count_failures_since("alice", SubjectKind.ACCOUNT, window) == 1
        assert await ledger.count_failures_since("bob", SubjectKind.ACCOUNT, window) == 0

    async def test_window_slides_without_deleting_rows(self, db, policy, clock):
        ledger = AttemptLedger(db, policy, clock=clock)
        for _ in range(3):
            await ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.FAILURE)
        window = timedelta(minutes=15)
        assert await ledger.count_failures_since("alice", SubjectKind.ACCOUNT, window) == 3

        clock.advance(minutes=16)
        assert await ledger.count_failures_since("alice", SubjectKind.ACCOUNT, window) == 0
        assert await ledger.count_failures_since(
            "alice", SubjectKind.ACCOUNT, timedelta(hours=1)
        ) == 3

    async def test_principal_scoping_for_resources(self, db, policy, clock):
        ledger = AttemptLedger(db, policy, clock=clock)
        await ledger.record("room", SubjectKind.RESOURCE, AttemptOutcome.FAILURE, principal_id="p1")
        await ledger.record("room", SubjectKind.RESOURCE, AttemptOutcome.FAILURE, principal_id="p2")
        window = timedelta(minutes=5)

        assert await ledger.count_failures_since(
            "room", SubjectKind.RESOURCE, window, principal_id="p1"
        ) == 1
        assert await ledger.count_failures_since("room", SubjectKind.RESOURCE, window) == 2
        # Same id under a different kind is a different subject.
        assert await ledger.count_failures_since("room", SubjectKind.ACCOUNT, window) == 0

    async def test_last_failure_can_skip_throttled_rows(self, db, policy, clock):
        ledger = AttemptLedger(db, policy, clock=clock)
        first = clock()
        await ledger.record("room", SubjectKind.RESOURCE, AttemptOutcome.FAILURE, principal_id="p1")
        clock.advance(seconds=30)
        await ledger.record(
            "room",
            SubjectKind.RESOURCE,
            AttemptOutcome.FAILURE,
            reason=LOCKED_FAILURE_REASON,
            principal_id="p1",
        )
        window = timedelta(minutes=5)

        latest = await ledger.last_failure_at(
            "room", SubjectKind.RESOURCE, window, principal_id="p1"
        )
        genuine = await ledger.last_failure_at(
            "room",
            SubjectKind.RESOURCE,
            window,
            principal_id="p1",
            exclude_reason=LOCKED_FAILURE_REASON,
        )
        assert latest == first + timedelta(seconds=30)
        assert genuine == first
        assert genuine.tzinfo is not None

    async def test_last_failure_none_when_window_empty(self, db, policy, clock):
        ledger = AttemptLedger(db, policy, clock=clock)
        assert await ledger.last_failure_at("x", SubjectKind.ACCOUNT, timedelta(minutes=1)) is None

    async def test_success_rows_never_carry_a_failure_reason(self, db, policy, clock):
        ledger = AttemptLedger(db, policy, clock=clock)
        attempt = await ledger.record(
            "alice", SubjectKind.ACCOUNT, AttemptOutcome.SUCCESS, reason="ignored"
        )
        assert attempt.failure_reason is None

    async def test_prune_removes_only_old_rows(self, db, policy, clock):
        ledger = AttemptLedger(db, policy, clock=clock)
        await ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.FAILURE)
        clock.advance(days=40)
        await ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.FAILURE)

        deleted = await ledger.prune(clock() - timedelta(days=30))
        assert deleted == 1
        assert await ledger.count_failures_since(
            "alice", SubjectKind.ACCOUNT, timedelta(days=365)
        ) == 1
