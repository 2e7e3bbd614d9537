"""
Database Connection and Session Management
Connects to PostgreSQL (SQLite for local runs and tests)
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from leaddialer.infrastructure.storage.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create engine for the given URL.

    In-memory SQLite needs a single shared connection so that every
    session sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


class Database:
    """Owns the engine and session factory for the stores."""

    def __init__(self, database_url: str, echo: bool = False):
        self.engine = create_db_engine(database_url, echo=echo)
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def create_tables(self) -> None:
        """Create tables and indexes if missing"""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables ensured")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Get database session with automatic cleanup

        Usage:
            with db.session() as session:
                leads = session.scalars(select(LeadRecord)).all()
        """
        session = self.SessionLocal()
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
