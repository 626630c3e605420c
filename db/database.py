"""
Database engine, session management, and initialization.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Callable, Generator, Optional
import logging

from config.settings import settings
from db.models import Base

logger = logging.getLogger(__name__)


def make_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Build an engine. In-memory SQLite shares one connection so every
    session sees the same database.
    """
    url = url or settings.DATABASE_URL
    kwargs = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = make_engine(settings.DATABASE_URL, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create all tables."""
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ Database initialized.")


def session_scope_factory(factory: Callable[[], Session]):
    """Build a `get_db`-style context manager over any session factory."""

    @contextmanager
    def scope() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return scope


get_db = session_scope_factory(SessionLocal)
get_db.__doc__ = "Context manager for database sessions."
