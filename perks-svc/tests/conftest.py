"""
Pytest fixtures for perks-svc.

Every test gets its own file-backed SQLite database (aiosqlite) so that
concurrent sessions really contend for the write lock. Identity comes from a
stub of the auth dependency: ``Authorization: Bearer <sub>[:<role>]``.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./.perks-test.db")
os.environ.setdefault("AUTH_JWKS_URL", "http://auth.invalid/.well-known/jwks.json")
os.environ["STAFF_SESSION_SECRET"] = "test-staff-session-secret"
os.environ["RL_ENABLED"] = "false"
os.environ["EVENTS_ENABLED"] = "false"
os.environ["ADMIN_EMAILS"] = "Perk.Boss+ops@googlemail.com; ops@nowio.app"

from datetime import timedelta

import httpx
import pytest
from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db import make_engine
from app.deps import get_db, get_optional_claims
from app.main import app
from app.models import Base, Perk, utcnow
from app.core.tokens import new_token


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'perks.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as s:
        yield s


@pytest.fixture
def make_perk(session_maker):
    """Insert a perk directly; defaults to an open, unfenced perk with 25 slots."""
    async def _make(**fields) -> Perk:
        fields.setdefault("title", "Free espresso")
        fields.setdefault("max_claims", 25)
        fields.setdefault("active", True)
        fields.setdefault("staff_unlock_token", new_token())
        async with session_maker() as s:
            p = Perk(**fields)
            s.add(p)
            await s.commit()
            await s.refresh(p)
            return p
    return _make


async def _stub_claims(authorization: str | None = Header(default=None)):
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    sub, _, role = authorization.split(" ", 1)[1].strip().partition(":")
    return {"sub": sub, "role": role or "member", "org_ids": []}


@pytest.fixture
async def client(session_maker):
    async def _get_db():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_optional_claims] = _stub_claims
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


def auth(sub: str, role: str | None = None) -> dict:
    return {"Authorization": f"Bearer {sub}:{role}" if role else f"Bearer {sub}"}


def hours(n: float) -> timedelta:
    return timedelta(hours=n)


def now():
    return utcnow()
