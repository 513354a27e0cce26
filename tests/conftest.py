"""Global test fixtures and shared test infrastructure.

Provides:
- Environment variable defaults (must be set before any gruff import)
- FakeRedis implementing the get/setex/delete/incr subset the cache layer uses
- An in-memory SQLite database (aiosqlite) with the full schema per test
- Model factories (make_user, make_group, add_member)
- An httpx AsyncClient bound to the app with the test database injected
"""

from __future__ import annotations

import os

# Environment defaults; must be set before importing gruff, which validates
# Settings on import.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")

from typing import Any
from uuid import uuid4

import httpx
import pytest
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gruff import models  # noqa: F401
from gruff.core.permissions import PrincipalType
from gruff.db.base import Base
from gruff.db.session import get_db
from gruff.main import app
from gruff.models.group import Group, GroupMember
from gruff.models.user import User
from gruff.utils import cache


# ---------------------------------------------------------------------------
# FakeRedis
# ---------------------------------------------------------------------------


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key: str):
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self.store[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def incr(self, key: str) -> int:
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = str(value)
        return value


class WriteFailingRedis(FakeRedis):
    async def setex(self, key: str, ttl: int, value: str) -> None:
        raise RedisError("write refused")

    async def incr(self, key: str) -> int:
        raise RedisError("write refused")


class UnreachableRedis(FakeRedis):
    async def get(self, key: str):
        raise RedisError("connection refused")


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    redis = FakeRedis()
    monkeypatch.setattr(cache, "get_redis_client", lambda: redis)
    return redis


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


async def make_user(
    db: AsyncSession,
    *,
    email: str | None = None,
    display_name: str | None = None,
    role: str = "user",
    **overrides: Any,
) -> User:
    user = User(
        id=str(uuid4()),
        email=email or f"{uuid4().hex[:8]}@example.com",
        display_name=display_name,
        role=role,
        is_active=True,
        **overrides,
    )
    db.add(user)
    await db.commit()
    return user


async def make_group(db: AsyncSession, name: str | None = None, **overrides: Any) -> Group:
    group = Group(id=str(uuid4()), name=name or f"group-{uuid4().hex[:8]}", **overrides)
    db.add(group)
    await db.commit()
    return group


async def add_member(
    db: AsyncSession, group: Group, member_type: PrincipalType, member_id: str
) -> GroupMember:
    """Insert a membership edge directly, bypassing the cycle/depth guards."""
    edge = GroupMember(group_id=group.id, member_type=member_type.value, member_id=member_id)
    db.add(edge)
    await db.commit()
    return edge


@pytest.fixture
async def alice(db) -> User:
    return await make_user(db, email="alice@example.com", display_name="Alice")


@pytest.fixture
async def bob(db) -> User:
    return await make_user(db, email="bob@example.com", display_name="Bob")


@pytest.fixture
async def admin(db) -> User:
    return await make_user(db, email="admin@example.com", display_name="Admin", role="admin")


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


def as_user(user: User) -> dict[str, str]:
    return {"X-User-Id": user.id}
