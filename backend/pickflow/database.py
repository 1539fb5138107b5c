"""Database engine, session factory, and base class.

One request is one unit of work: ``get_db()`` yields an AsyncSession,
commits when the handler returns and rolls back on any exception.

Work that must only happen once the transaction is durable (domain event
delivery, idempotent response storage) is registered with ``on_commit()``
and run by ``run_commit_hooks()`` after a successful commit.  A rolled
back unit of work drops its hooks.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from pickflow.config import settings

logger = logging.getLogger(__name__)

CommitHook = Callable[[], Awaitable[None]]

_HOOKS_KEY = "after_commit_hooks"


def _engine_kwargs(url: str) -> dict:
    # SQLite (tests, local dev) uses a single-connection pool
    if url.startswith("sqlite"):
        return {"echo": False}
    return {"echo": settings.debug, "pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(settings.database_url, **_engine_kwargs(settings.database_url))

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Declarative base for all pickflow tables."""
    pass


# ── Commit hooks ────────────────────────────────────────────

def on_commit(session: AsyncSession, hook: CommitHook) -> None:
    """Register a coroutine factory to run after the session commits."""
    session.info.setdefault(_HOOKS_KEY, []).append(hook)


def discard_commit_hooks(session: AsyncSession) -> None:
    session.info.pop(_HOOKS_KEY, None)


async def run_commit_hooks(session: AsyncSession) -> None:
    """Run and clear the hooks registered on ``session``.

    Hook failures are logged, never raised: the transaction is already
    committed and the caller's response must reflect that.
    """
    hooks: list[CommitHook] = session.info.pop(_HOOKS_KEY, [])
    for hook in hooks:
        try:
            await hook()
        except Exception:
            logger.exception("After-commit hook failed")


# ── Session dependency ──────────────────────────────────────

@asynccontextmanager
async def unit_of_work(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            discard_commit_hooks(session)
            raise
        await run_commit_hooks(session)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session for one request-scoped transaction."""
    async with unit_of_work(async_session) as session:
        yield session
