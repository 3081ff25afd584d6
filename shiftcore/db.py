from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncEngine, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import MetaData
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Awaitable, Callable
from .config import settings
from .errors import SchedulingError
import logging


convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    metadata = metadata


AfterCommitCallback = Callable[[], Awaitable[None]]

_AFTER_COMMIT_KEY = "after_commit_callbacks"


def _masked_url(url: str) -> str:
    if settings.POSTGRES_PASSWORD:
        return url.replace(settings.POSTGRES_PASSWORD, "***")
    return url


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    logging.getLogger(__name__).info("creating async engine", extra={"url": _masked_url(url)})
    kwargs.setdefault("echo", False)
    if url.startswith("postgresql"):
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker[AsyncSession](
        bind=engine, expire_on_commit=False, autoflush=False, autocommit=False
    )


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    return build_engine(settings.DATABASE_URL)


@lru_cache(maxsize=1)
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(get_engine())


def add_after_commit_callback(session: AsyncSession, callback: AfterCommitCallback) -> None:
    """Queue a coroutine factory to run once the session's transaction commits.

    Callbacks are dropped on rollback, so side effects like notification delivery
    never observe a transaction that did not land.
    """
    session.info.setdefault(_AFTER_COMMIT_KEY, []).append(callback)


def discard_after_commit_callbacks(session: AsyncSession) -> None:
    session.info.pop(_AFTER_COMMIT_KEY, None)


async def run_after_commit_callbacks(session: AsyncSession) -> None:
    callbacks = session.info.pop(_AFTER_COMMIT_KEY, None) or []
    for cb in callbacks:
        try:
            await cb()
        except Exception:
            # A committed transition must not be reported as failed because a follow-up failed.
            logging.getLogger(__name__).exception("after-commit callback failed")


@asynccontextmanager
async def get_async_session(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncSession:
    session = (session_factory or get_sessionmaker())()
    try:
        logging.getLogger(__name__).debug("db session begin")
        yield session
        await session.commit()
        logging.getLogger(__name__).debug("db session commit")
    except Exception as exc:
        if isinstance(exc, SchedulingError):
            logging.getLogger(__name__).debug("db session rollback", extra={"code": exc.code})
        else:
            logging.getLogger(__name__).exception("db session rollback due to error")
        discard_after_commit_callbacks(session)
        await session.rollback()
        raise
    else:
        await run_after_commit_callbacks(session)
    finally:
        await session.close()
        logging.getLogger(__name__).debug("db session closed")
