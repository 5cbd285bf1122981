"""Bounded store access and the shared clock."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from api.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@asynccontextmanager
async def store_call(operation: str, timeout_seconds: float) -> AsyncIterator[None]:
    """Run a block of store calls under a deadline.

    Timeouts and driver errors surface as StoreUnavailable so callers can
    fail closed.
    """
    try:
        async with asyncio.timeout(timeout_seconds):
            yield
    except TimeoutError as exc:
        logger.warning("Store call timed out after %.1fs: %s", timeout_seconds, operation)
        raise StoreUnavailable(f"{operation} timed out") from exc
    except SQLAlchemyError as exc:
        logger.warning("Store call failed: %s: %s", operation, exc.__class__.__name__)
        raise StoreUnavailable(f"{operation} failed") from exc


def advisory_lock_key(*parts: str) -> int:
    digest = hashlib.sha256(":".join(parts).encode()).hexdigest()
    return int(digest[:15], 16) % (2**31)


async def acquire_subject_lock(db: AsyncSession, *parts: str) -> None:
    """Serialize count-then-act sequences for one subject until commit.

    Uses a transaction-scoped advisory lock on PostgreSQL. SQLite already
    serializes writers, so nothing is taken there.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    await db.execute(
        text("SELECT pg_advisory_xact_lock(:key)"),
        {"key": advisory_lock_key(*parts)},
    )


def fingerprint(raw: str) -> str:
    # Log a short fingerprint only; never log raw secret or token material.
    return hashlib.sha256(raw.encode()).hexdigest()[:12]
