"""Shared fixtures: a fresh SQLite database per test, users, a group."""

import os

# Settings are read once at import; point the application engine at SQLite
os.environ.setdefault("DATABASE_URL", "sqlite:///./grapple-test.db")
os.environ.setdefault("ENVIRONMENT", "development")

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from grapple.core.changes import ChangeFeed
from grapple.core.database import unit_of_work
from grapple.models import Base, Group, GroupMember, User, utcnow
from grapple.schemas import ProposalCreate, ProposalResponse
from grapple.services import ProposalService


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'grapple.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


# =============================================================================
# IDENTITY
# =============================================================================


@dataclass
class Crew:
    """Alice, Bob and Carol share a group; Dave belongs to another one."""

    alice: User
    bob: User
    carol: User
    dave: User
    group_id: UUID
    other_group_id: UUID


@pytest.fixture
async def crew(session_factory) -> Crew:
    async with session_factory() as s:
        users = {
            name: User(email=f"{name}@example.com", display_name=name.title())
            for name in ("alice", "bob", "carol", "dave")
        }
        s.add_all(users.values())
        group = Group(name="Friday Crew")
        other = Group(name="Chess Club")
        s.add_all([group, other])
        await s.flush()

        s.add_all(
            [
                GroupMember(group_id=group.id, user_id=users[name].id)
                for name in ("alice", "bob", "carol")
            ]
            + [GroupMember(group_id=other.id, user_id=users["dave"].id)]
        )
        await s.commit()

    return Crew(group_id=group.id, other_group_id=other.id, **users)


# =============================================================================
# PROPOSALS
# =============================================================================


@pytest.fixture
def make_proposal(session_factory, feed):
    """Create a committed proposal; defaults to threshold 2, 24h window."""

    async def _make(
        group_id: UUID,
        creator_id: UUID,
        title: str = "Rooftop dinner",
        threshold: int | None = 2,
        window: timedelta = timedelta(hours=24),
        now: datetime | None = None,
        **fields,
    ) -> ProposalResponse:
        now = now or utcnow()
        async with unit_of_work(session_factory, feed) as s:
            return await ProposalService(s).create_proposal(
                group_id,
                creator_id,
                ProposalCreate(
                    title=title,
                    vote_window_ends_at=now + window,
                    threshold=threshold,
                    **fields,
                ),
                now=now,
            )

    return _make
