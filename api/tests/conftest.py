"""API and service test configuration."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from api.dependencies import get_db, get_policy
from api.main import create_app
from api.middleware.auth import create_access_token
from api.services.secret_hashing import BcryptSecretHasher
from api.services.security_services import build_security_services
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from warden.models import Base
from warden.services.security_policy import ResourceSecretSettings, SecurityPolicy

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock shared by every service under test."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def policy():
    # Minimum bcrypt cost keeps hashing fast.
    return SecurityPolicy(resource_secret=ResourceSecretSettings(hash_rounds=4))


@pytest.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'warden.db'}")

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN.
    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def hasher(policy):
    return BcryptSecretHasher(policy.resource_secret.hash_rounds)


@pytest.fixture
def services(db, policy, hasher, clock):
    return build_security_services(db, policy, hasher=hasher, clock=clock)


def auth_headers(principal_id: str, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(principal_id, role)}"}


@pytest.fixture
def app(session_factory, policy):
    a = create_app()

    async def _override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    a.dependency_overrides[get_db] = _override_db
    a.dependency_overrides[get_policy] = lambda: policy
    return a


@pytest.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def headers_for():
    return auth_headers
