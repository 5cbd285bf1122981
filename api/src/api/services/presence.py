"""Presence store collaborator: locking a principal forces them offline."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from warden.models import PrincipalPresence
from warden.models.enums import PresenceStatus

from api.services.store import Clock, utc_now

logger = logging.getLogger(__name__)


class PresenceStore(Protocol):
    async def set_offline(self, principal_id: str) -> None: ...


class SqlPresenceStore:
    def __init__(self, db: AsyncSession, *, clock: Clock = utc_now):
        self.db = db
        self._clock = clock

    async def set_offline(self, principal_id: str) -> None:
        now = self._clock()
        async with self.db.begin_nested():
            result = await self.db.execute(
                select(PrincipalPresence).where(PrincipalPresence.principal_id == principal_id)
            )
            presence = result.scalars().first()
            if presence is None:
                presence = PrincipalPresence(principal_id=principal_id)
                self.db.add(presence)
            presence.status = PresenceStatus.OFFLINE
            presence.last_activity = now
        logger.info("Marked principal %s offline", principal_id)
