import logging
from contextlib import contextmanager
from typing import Callable, Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from reminder_service.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # Dispatcher fan-out and sender consumers open sessions from worker threads
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
    return create_engine(
        database_url,
        pool_size=10,
        max_overflow=20,
        pool_recycle=300,      # Recycle connections every 5 minutes
        pool_pre_ping=True,    # Validate connections before use
        pool_timeout=30,
    )


def build_session_factory(bind: Engine) -> Callable[[], Session]:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = build_session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: Callable[[], Session] = SessionLocal) -> Generator[Session, None, None]:
    """
    Yield a session that commits on success and rolls back on any exception.

    Usage:
        with session_scope() as db:
            repository.set_reminder_status(db, reminder_id, ReminderStatus.PENDING)
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"[Store] Session rolled back: {e!r}")
        raise
    finally:
        db.close()


def init_db(bind: Engine = engine) -> None:
    """Create any missing tables."""
    from reminder_service import models  # noqa: F401  register mappers

    from reminder_service.db.base import Base

    Base.metadata.create_all(bind=bind)
