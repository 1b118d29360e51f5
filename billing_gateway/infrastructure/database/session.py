"""Database engine, session factory and unit-of-work helpers"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from billing_gateway.config import settings


def build_engine(database_url: str | None = None) -> Engine:
    """Create an engine; pooled for server databases, thread-shareable for SQLite"""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})

    # Connection pool: max 20 connections, recycle after 1 hour to avoid stale connections
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,
        max_overflow=10,
        pool_recycle=3600,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@contextmanager
def unit_of_work(session_factory: sessionmaker) -> Iterator[Session]:
    """One atomic transaction: commit on success, roll back on any error"""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def read_only(session_factory: sessionmaker) -> Iterator[Session]:
    """Snapshot read; nothing is committed"""
    db = session_factory()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
