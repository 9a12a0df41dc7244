"""
Database engine, session factory, and audit logging.

- create_engine() builds a sync engine (psycopg2 for PostgreSQL); postgresql+asyncpg://
  URLs from the application config are normalized to the sync driver.
- Engines and session factories are created by the caller and passed into every
  operation; nothing here is cached at module level.
- session_scope() wraps one unit of work: commit on success, rollback on error.
- log_audit() for archive creation and purges.
"""

import uuid
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID

from sqlalchemy import create_engine as sa_create_engine
from sqlalchemy import insert, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from record_archiver.base import Base
from record_archiver import models  # noqa: F401 - register orgs, messages, runs with Base.metadata
from record_archiver import models_archive  # noqa: F401 - register Archive with Base.metadata
from record_archiver import models_audit  # noqa: F401 - register AuditLog with Base.metadata
from record_archiver.models_audit import AuditLog


def normalize_database_url(database_url: str) -> str:
    """Convert postgresql+asyncpg:// to postgresql:// (psycopg2); other URLs are returned unchanged."""
    return database_url.replace("postgresql+asyncpg", "postgresql")


def create_engine(database_url: str, **kwargs: Any) -> Engine:
    """
    Create a sync engine for database_url.

    PostgreSQL engines get a bounded pool sized for the archiver's worker pool;
    extra kwargs are passed through to sqlalchemy.create_engine.
    """
    url = normalize_database_url(database_url)
    if url.startswith("postgresql"):
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 20)
    return sa_create_engine(url, pool_pre_ping=True, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory bound to engine."""
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


def init_db(engine: Engine) -> None:
    """
    Create tables (for init / tests); on PostgreSQL also ensure the pgvector extension.
    """
    if engine.dialect.name == "postgresql":
        with engine.begin() as conn:
            conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Context manager for a single DB session (commit on success, rollback on error)."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def log_audit(
    session: Session,
    action: str,
    resource_type: str,
    resource_id: str | int | UUID | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """
    Write an audit log entry (e.g. archive.created, archive.purged).
    Caller is responsible for committing the session.
    """
    session.execute(
        insert(AuditLog.__table__).values(
            id=uuid.uuid4(),
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
        )
    )
