"""Test fixtures — a fresh SQLite database file per test.

Each test gets its own engine over a file in tmp_path. NullPool means
every session opens its own connection, so two sessions really are two
concurrent units of work (needed for the optimistic lock tests).

bcrypt runs at its minimum cost here; production hashing cost is a
setting, not something these tests are about.
"""

import os

os.environ.setdefault("CODEHUB_BCRYPT_ROUNDS", "4")
os.environ.setdefault("CODEHUB_JWT_SECRET", "test-secret-that-is-long-enough-for-hs256")

import pytest_asyncio
from sqlalchemy.pool import NullPool

from codehub.db.engine import create_engine, create_session_factory
from codehub.db.models import Base
from codehub.services.user_service import UserService


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'codehub.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def users(db_session):
    return UserService(db_session)


@pytest_asyncio.fixture()
async def root(users):
    return await users.ensure_root(
        {
            "name": "admin",
            "email": "admin@example.com",
            "full_name": "Administrator",
            "password": "root_password",
        }
    )


@pytest_asyncio.fixture()
async def alice(users, root):
    return await users.create_user(
        {"name": "alice", "email": "alice@example.com", "password": "alice_password"}
    )


@pytest_asyncio.fixture()
async def bob(users, root):
    return await users.create_user(
        {
            "name": "bob",
            "email": "bob@example.com",
            "full_name": "Bob Builder",
            "password": "bob_password",
        }
    )
