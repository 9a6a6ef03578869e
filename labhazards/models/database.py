from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from labhazards.config import settings

logger = logging.getLogger(__name__)

if settings.DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        settings.DATABASE_URL, connect_args={"check_same_thread": False}
    )
else:
    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, pool_size=5)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db():
    """FastAPI dependency that yields a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(
    db: Session,
    *,
    max_wait: float | None = None,
    timeout: float | None = None,
) -> Iterator[Session]:
    """
    Run a block of writes as one transaction.

    Commits when the block exits normally; rolls back and re-raises on any
    exception. On PostgreSQL ``max_wait`` bounds lock waits and ``timeout``
    bounds each statement, both in seconds.
    """
    try:
        if db.get_bind().dialect.name == "postgresql":
            if max_wait:
                db.execute(text(f"SET LOCAL lock_timeout = {int(max_wait * 1000)}"))
            if timeout:
                db.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
