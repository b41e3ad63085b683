"""Database session utilities."""
from contextlib import contextmanager
import logging
import time
from typing import Callable, ContextManager, Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session

from .. import config
from ..domain import models  # noqa: F401  (registers tables on SQLModel.metadata)

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], ContextManager[Session]]


def build_engine(url: str) -> Engine:
    kwargs: dict = {"echo": False, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def session_factory(bind_engine: Engine) -> SessionFactory:
    """Return a scoped-session context manager bound to ``bind_engine``.

    The session commits when the block exits cleanly and rolls back otherwise.
    """
    maker = sessionmaker(
        bind=bind_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        class_=Session,
    )

    @contextmanager
    def scoped() -> Iterator[Session]:
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return scoped


engine = build_engine(config.DATABASE_URL)
get_session = session_factory(engine)


def init_db(bind_engine: Optional[Engine] = None, attempts: int = 30) -> None:
    """Create tables if they do not exist.

    Retries on startup to wait for the database service in Docker.
    """
    target = bind_engine or engine
    last_err: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            SQLModel.metadata.create_all(target)
            return
        except Exception as exc:  # pragma: no cover
            last_err = exc
            logger.warning("waiting for database... (%d/%d) %s", attempt, attempts, exc)
            time.sleep(1)
    if last_err:
        raise last_err
