# database.py - engine, session factory and thread-offloading helpers

import logging
from typing import Generator

import anyio
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from config import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

# Shared Base for all models
Base = declarative_base()


def _build_engine(url: str):
    """PostgreSQL gets a real pool; SQLite (dev/tests) must allow cross-thread use"""
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            pool_pre_ping=True,
        )
    return create_engine(
        url,
        pool_size=20,
        max_overflow=40,
        pool_timeout=30,
        pool_pre_ping=True,
        pool_recycle=1800,
        connect_args={
            "keepalives": 1,
            "keepalives_idle": 150,
            "keepalives_interval": 30,
            "keepalives_count": 5,
            "options": "-c statement_timeout=30000 -c lock_timeout=10000",
            "application_name": "softvibe_api",
        },
    )


engine = _build_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
)


# --- Sync dependency ---
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


def ping(db: Session) -> bool:
    """SELECT 1 probe for the health endpoint"""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


# --- Non-blocking helpers for async handlers ---

async def db_execute(db: Session, stmt, params=None):
    """Execute a statement in a worker thread so the event loop stays free"""
    if params is None:
        return await anyio.to_thread.run_sync(db.execute, stmt)
    return await anyio.to_thread.run_sync(db.execute, stmt, params)


async def db_commit(db: Session):
    """Commit transaction without blocking"""
    await anyio.to_thread.run_sync(db.commit)


async def db_rollback(db: Session):
    """Rollback transaction without blocking"""
    await anyio.to_thread.run_sync(db.rollback)


async def db_call(func, *args):
    """Run any blocking session call (get, flush, refresh, delete) off the loop"""
    return await anyio.to_thread.run_sync(func, *args)


def init_db(bind=None):
    """Create all tables for the registered models"""
    import models  # noqa: F401  registers the mappers on Base

    Base.metadata.create_all(bind=bind or engine)


__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'get_db',
    'ping',
    'db_execute',
    'db_commit',
    'db_rollback',
    'db_call',
    'init_db',
]
