from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import Settings
from .errors import TransientPersistenceError
from .logging import get_logger

T = TypeVar("T")

TRANSIENT_SQLSTATES = {"40001", "40P01"}
# SQLITE_BUSY, SQLITE_LOCKED
SQLITE_LOCK_CODES = {5, 6}
SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked")

logger = get_logger(component="db")


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(settings.database_url, echo=False, future=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncIterator[dict[str, object]]:
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    state: dict[str, object] = {"engine": engine, "session_factory": session_factory}
    try:
        yield state
    finally:
        await engine.dispose()


def is_transient_error(exc: BaseException) -> bool:
    """Serialization failures, deadlocks and SQLite lock contention only.

    Other driver errors (missing tables, refused connections) are deterministic
    and must surface unchanged.
    """
    if isinstance(exc, TransientPersistenceError):
        return True
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in TRANSIENT_SQLSTATES:
        return True
    if not isinstance(exc, OperationalError):
        return False
    sqlite_code = getattr(orig, "sqlite_errorcode", None)
    if isinstance(sqlite_code, int):
        # Extended result codes keep the primary code in the low byte.
        return (sqlite_code & 0xFF) in SQLITE_LOCK_CODES
    message = str(orig).lower()
    return any(marker in message for marker in SQLITE_LOCK_MESSAGES)


async def run_transaction(
    session_factory: async_sessionmaker[AsyncSession],
    body: Callable[[AsyncSession], Awaitable[T]],
    *,
    settings: Settings,
    on_rollback: Callable[[], None] | None = None,
    name: str = "transaction",
) -> T:
    """Run ``body`` in a fresh session/transaction, re-running it on conflicts.

    ``on_rollback`` is invoked after every failed attempt, before the next one
    starts or the error propagates, so callers can restore in-memory state that
    the rolled back attempt mutated.
    """
    max_attempts = max(settings.transaction_max_attempts, 1)
    attempt = 0
    while True:
        attempt += 1
        try:
            async with session_factory() as session:
                async with session.begin():
                    return await body(session)
        except Exception as exc:
            if on_rollback is not None:
                on_rollback()
            if not is_transient_error(exc):
                raise
            if attempt >= max_attempts:
                logger.error("transaction_retries_exhausted", transaction=name, attempts=attempt)
                raise TransientPersistenceError(f"{name} failed after {attempt} attempts") from exc
            logger.warning("transaction_retry", transaction=name, attempt=attempt, error=str(exc))
            await asyncio.sleep(settings.transaction_retry_delay_s * attempt)


__all__ = [
    "Base",
    "create_engine",
    "create_session_factory",
    "lifespan",
    "is_transient_error",
    "run_transaction",
]
