"""
Solvency Breaker - Database Engine.

============================================================
PURPOSE
============================================================
Sync SQLAlchemy engine and session handling for the audit
trail.

- Explicit transaction boundaries
- Rollback on ANY exception
- Hard failure on persistence errors

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base
from .types import AuditPersistenceError


logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite:///solvency_breaker_audit.db"


def get_database_url() -> str:
    """Get the audit database URL from the environment."""
    load_dotenv()
    url = os.getenv("SOLVENCY_DATABASE_URL")
    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"SOLVENCY_DATABASE_URL not set, using default: {url}")
    return url


def create_database_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    """
    Create an engine for the audit database.

    In-memory SQLite shares one connection so every session
    sees the same tables.
    """
    url = url or get_database_url()
    logger.info(f"Creating audit database engine for: {url.split('@')[-1]}")

    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine, create_tables: bool = True) -> sessionmaker:
    """
    Build a session factory bound to the engine.

    Args:
        engine: SQLAlchemy engine
        create_tables: Create missing audit tables first
    """
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


@contextmanager
def transaction_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for explicit transaction boundaries.

    Commits only if no exception occurs.
    Rolls back on ANY exception and raises it as
    AuditPersistenceError, driver errors included.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except AuditPersistenceError:
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"Audit transaction failed, rolling back: {e!r}")
        session.rollback()
        raise AuditPersistenceError(f"Transaction failed: {e!r}") from e
    finally:
        session.close()
