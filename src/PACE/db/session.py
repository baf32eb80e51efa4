# src/PACE/db/session.py
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool
from starlette.requests import Request

from PACE.app_logger import get_logger
from PACE.core.config import settings
from PACE.errors import Conflict

log = get_logger("db")

# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

# Use NullPool in tests (or when explicitly requested) to avoid sharing the same
# asyncpg connection across tasks.
USE_NULLPOOL = (
    os.getenv("SQLALCHEMY_NULLPOOL", "0") == "1"
    or bool(getattr(settings, "TESTING", False))
)


def build_engine(url: str | None = None) -> AsyncEngine:
    kwargs: dict[str, Any] = {
        "echo": bool(settings.DB_ECHO),
        "pool_pre_ping": True,  # protects against stale connections
    }
    if USE_NULLPOOL:
        kwargs["poolclass"] = NullPool
    return create_async_engine(url or settings.DATABASE_URL, **kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False, class_=AsyncSession)


@lru_cache
def get_engine() -> AsyncEngine:
    """Expose the process-wide engine (e.g., for health checks / pings)."""
    return build_engine()


@lru_cache
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Return the process-wide async sessionmaker."""
    return build_sessionmaker(get_engine())


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    # Prefer the sessionmaker bound by the app lifespan (same event loop)
    maker = getattr(request.app.state, "async_sessionmaker", None) or get_sessionmaker()
    async with maker() as session:
        yield session


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

Hook = Callable[[], Awaitable[Any]]


class PostCommitHooks:
    """Callbacks queued inside a transaction and run only after it commits."""

    def __init__(self) -> None:
        self._hooks: list[tuple[str, Hook]] = []

    def add(self, hook: Hook, name: str | None = None) -> None:
        self._hooks.append((name or getattr(hook, "__name__", "hook"), hook))

    def __len__(self) -> int:
        return len(self._hooks)

    async def run(self) -> None:
        for name, hook in self._hooks:
            try:
                await hook()
            except Exception:
                # a committed write is never failed by its side effects
                log.warning("post-commit hook %s failed", name, exc_info=True)
        self._hooks.clear()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[PostCommitHooks]:
    """
    Run the block as one transaction.

    Commits on success and then fires the queued post-commit hooks; rolls back
    and re-raises on any error. Store-level unique violations surface as
    ``Conflict``.
    """
    hooks = PostCommitHooks()
    try:
        yield hooks
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise translate_integrity_error(exc) from exc
    except BaseException:
        await session.rollback()
        raise
    await hooks.run()


def translate_integrity_error(exc: IntegrityError, message: str | None = None) -> Exception:
    """Map a store integrity error onto the engine's error taxonomy."""
    orig = getattr(exc, "orig", None)
    low = str(orig or exc).lower()
    if "unique" in low or "duplicate key" in low:
        return Conflict(message or "A record with the same unique key already exists")
    log.error("unmapped integrity error: %s", orig or exc)
    return exc


# ---------------------------------------------------------------------------
# Dialect helpers
# ---------------------------------------------------------------------------

def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def insert_ignore(session: AsyncSession, table: sa.Table, index_elements: Iterable[str]):
    """``INSERT ... ON CONFLICT DO NOTHING`` for Postgres and SQLite."""
    if dialect_name(session) == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as _insert
    else:
        from sqlalchemy.dialects.sqlite import insert as _insert
    return _insert(table).on_conflict_do_nothing(index_elements=list(index_elements))



async def share_lock(session: AsyncSession, table: sa.Table) -> None:
    """
    Hold ``table`` in SHARE mode until the transaction ends (Postgres only).

    Concurrent share-lockers proceed; writers of ``table`` wait for them and
    they wait for writers, so a reader of the table and a writer never commit
    past each other's uncommitted rows.
    """
    if dialect_name(session) == "postgresql":
        await session.execute(sa.text(f'LOCK TABLE "{table.name}" IN SHARE MODE'))
