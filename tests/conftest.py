"""
Shared fixtures: an in-memory SQLite database, a recording job queue, and a
rule registry wired over the test domain in tests/domain.py.
"""

import os

os.environ.setdefault("NOTIFYHUB_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFYHUB_SECRET_KEY", "test-secret-key-for-notifyhub-tests-only")
os.environ.setdefault("NOTIFYHUB_LOG_FORMAT", "text")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import notifyhub.models  # noqa: F401
from notifyhub.core.lifecycle import LifecycleHooks
from notifyhub.models.user import User
from notifyhub.subscribers import RuleRegistry, SubscriptionEngine

from domain import Comment, Favorite, Journal, Note, Post


class RecordingQueue:
    """JobQueue double that keeps (priority, job) pairs in memory."""

    def __init__(self):
        self.jobs = []

    async def enqueue(self, job, priority):
        self.jobs.append((priority, job))

    def drain(self):
        jobs, self.jobs = self.jobs, []
        return [job for _, job in jobs]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(db_engine):
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    async def _make(name=None):
        counter["n"] += 1
        n = counter["n"]
        user = User(email=f"user{n}@example.com", display_name=name or f"User {n}")
        session.add(user)
        await session.flush()
        return user

    return _make


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def build_test_registry(**comment_options):
    registry = RuleRegistry()
    registry.register_subscribable(Post)
    registry.notifies_subscribers_of(Post, "self", on="update")
    registry.notifies_subscribers_of(Comment, "post", **comment_options)
    registry.auto_subscribes(Comment, "user", to="post")
    registry.notifies_subscribers_of(Journal, "posts", on="update")
    registry.notifies_subscribers_of(Journal, "featured_posts", on="create")
    registry.notifies_subscribers_of(Note, "parent")
    registry.notifies_owner_of(Favorite, "post")
    return registry


@pytest.fixture
def registry():
    return build_test_registry()


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def hooks():
    return LifecycleHooks()


@pytest.fixture
def engine(registry, hooks, queue):
    engine = SubscriptionEngine(registry, hooks, queue, batch_size=2)
    engine.install()
    return engine


@pytest.fixture
def run_jobs(engine, queue, session):
    """Run every queued fan-out job in the test session; returns updates created."""

    async def _run():
        created = 0
        for job in queue.drain():
            created += await engine.fanout.run(session, job)
        return created

    return _run
