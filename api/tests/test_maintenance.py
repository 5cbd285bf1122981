"""Tests for the security cleanup sweep."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

from api.services.maintenance import run_maintenance_worker, run_security_cleanup
from sqlalchemy import select
from warden.models import AccessSession
from warden.models.enums import AttemptOutcome, LockoutReason, SubjectKind


class TestSecurityCleanup:
    async def test_cleanup_reclaims_only_stale_rows(self, services, db, policy, clock):
        await services.ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.FAILURE)
        expired_lock = await services.lockouts.lock(
            "alice", LockoutReason.ADMIN_ACTION, duration=timedelta(minutes=5)
        )
        await services.lockouts.lock("bob", LockoutReason.ADMIN_ACTION, permanent=True)
        await services.sessions.issue("room", "p1", ttl=timedelta(minutes=1))
        clock.advance(days=31)
        await services.ledger.record("alice", SubjectKind.ACCOUNT, AttemptOutcome.FAILURE)
        live_session = await services.sessions.issue("room", "p2")

        summary = await run_security_cleanup(db, policy, retention_days=30, clock=clock)

        assert summary["attempts_deleted"] == 1
        assert summary["sessions_deleted"] == 1
        assert summary["lockouts_expired"] == 1
        await db.refresh(expired_lock)
        assert expired_lock.is_active is False
        assert (await services.lockouts.is_locked("bob")).locked is True
        remaining = (await db.execute(select(AccessSession.token))).scalars().all()
        assert remaining == [live_session.token]

    async def test_worker_stops_on_event(self):
        stop = asyncio.Event()
        with patch(
            "api.services.maintenance.run_security_cleanup", new=AsyncMock(return_value={})
        ) as cleanup, patch("api.services.maintenance.get_session") as get_session:
            get_session.return_value.__aenter__ = AsyncMock(return_value=AsyncMock())
            get_session.return_value.__aexit__ = AsyncMock(return_value=False)
            task = asyncio.create_task(run_maintenance_worker(stop, poll_interval_seconds=0.01))
            await asyncio.sleep(0.05)
            stop.set()
            await asyncio.wait_for(task, timeout=1)

        assert cleanup.await_count == 1
