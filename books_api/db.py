import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

logger = logging.getLogger("books_api.db")


def _is_memory_sqlite(database: str | None) -> bool:
    return not database or database == ":memory:" or "mode=memory" in database


def build_engine(url: str) -> Engine:
    sa_url = make_url(url)
    if sa_url.get_backend_name() != "sqlite":
        return create_engine(url, future=True)

    connect_args = {"check_same_thread": False}
    if _is_memory_sqlite(sa_url.database):
        # One shared connection, otherwise each pooled connection gets its own empty database.
        return create_engine(url, future=True, connect_args=connect_args, poolclass=StaticPool)

    directory = os.path.dirname(os.path.abspath(sa_url.database))
    os.makedirs(directory, exist_ok=True)
    return create_engine(url, future=True, connect_args=connect_args)


class Database:
    """Process-wide storage handle: one engine plus the session factory bound to it."""

    def __init__(self, url: str):
        self.url = url
        self.engine = build_engine(url)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )

    def init_db(self) -> None:
        from . import entities  # noqa: F401  registers BookRecord on Base.metadata

        Base.metadata.create_all(bind=self.engine)
        logger.info("database.ready", extra={"url": self.engine.url.render_as_string(hide_password=True)})

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
