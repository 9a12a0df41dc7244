"""
Archive metadata store.

- archived_starts(): snapshot of window starts already covered (planner input).
- persist_archive(): one atomic insert per built task, plus an audit entry.
- release_archive(): idempotent removal of a task's local artifact.
- get_unpurged_archives(): persisted windows whose originals are still in the hot store.

persist_archive does not check for an existing row; the planner never offers a covered
window, and a second insert for the same window fails on uq_archives_window.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, tzinfo

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from record_archiver.db import log_audit, session_scope
from record_archiver.errors import InvariantError, PersistenceError, TransientStoreError
from record_archiver.models_archive import Archive
from record_archiver.periods import UTC, Granularity, as_utc
from record_archiver.tasks import ArchiveTask, RecordCategory, TaskState

logger = logging.getLogger(__name__)


def archived_starts(
    session: Session, org_id: int, category: RecordCategory, granularity: Granularity
) -> set[datetime]:
    """Start instants (aware UTC) of non-superseded archives for org/category/granularity."""
    stmt = select(Archive.start_date).where(
        Archive.org_id == org_id,
        Archive.archive_type == category.value,
        Archive.period == granularity.value,
        Archive.superseded_by_id.is_(None),
    )
    try:
        return {as_utc(start) for start in session.scalars(stmt)}
    except SQLAlchemyError as e:
        raise TransientStoreError(
            "failed to read existing archives", details={"org_id": org_id, "category": category.value}
        ) from e


def persist_archive(
    session_factory: sessionmaker[Session], task: ArchiveTask, *, require_url: bool = False
) -> int:
    """
    Insert the archives row for a built task and return its id.

    Args:
        session_factory: Hot-store session factory.
        task: Built task (record_count, size and hash set).
        require_url: Refuse tasks without a remote url (upload enabled).

    Returns:
        The new archive id; also set on task.archive_id.

    Raises:
        InvariantError: task is not built, already persisted, or lacks a required url.
        PersistenceError: the insert failed; nothing was written and the local file is kept.
    """
    if not task.is_built:
        raise InvariantError("cannot persist an unbuilt archive task", details=task.describe())
    if task.is_persisted:
        raise InvariantError("archive task already persisted", details=task.describe())
    if require_url and not task.url:
        raise InvariantError("cannot persist an archive without its remote url", details=task.describe())

    archive = Archive(
        org_id=task.org_id,
        archive_type=task.category.value,
        start_date=as_utc(task.start),
        period=task.granularity.value,
        record_count=task.record_count,
        size=task.size,
        hash=task.hash,
        url=task.url,
        build_time_ms=task.build_time_ms,
        is_purged=False,
    )
    try:
        with session_scope(session_factory) as session:
            session.add(archive)
            session.flush()
            log_audit(
                session,
                "archive.created",
                "archive",
                archive.id,
                details={**task.describe(), "record_count": task.record_count, "hash": task.hash},
            )
            archive_id = archive.id
            created_at = archive.created_at
    except SQLAlchemyError as e:
        raise PersistenceError("failed to insert archive", details=task.describe()) from e

    task.archive_id = archive_id
    task.is_purged = False
    task.created_at = as_utc(created_at)
    task.state = TaskState.PERSISTED
    logger.info("Archive persisted", extra={**task.describe(), "archive_id": archive_id})
    return archive_id


def release_archive(task: ArchiveTask) -> None:
    """
    Delete the task's local artifact if it still exists; metadata is untouched.

    Best effort: a file that cannot be removed is logged and left for the next run's
    stale-artifact sweep (see builder.discard_stale_artifacts).
    """
    if not task.local_path:
        return
    try:
        os.remove(task.local_path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning(
            "Could not remove local archive", extra={**task.describe(), "path": task.local_path}, exc_info=True
        )


def task_from_archive(archive: Archive, tz: tzinfo = UTC) -> ArchiveTask:
    """Rebuild a persisted ArchiveTask from its row; end is derived on tz's calendar."""
    granularity = Granularity(archive.period)
    start = as_utc(archive.start_date)
    return ArchiveTask(
        org_id=archive.org_id,
        category=RecordCategory(archive.archive_type),
        granularity=granularity,
        start=start,
        end=granularity.advance(start, tz),
        record_count=archive.record_count,
        size=archive.size,
        hash=archive.hash,
        url=archive.url,
        build_time_ms=archive.build_time_ms,
        archive_id=archive.id,
        is_purged=archive.is_purged,
        created_at=as_utc(archive.created_at),
        state=TaskState.PURGED if archive.is_purged else TaskState.PERSISTED,
    )


def get_unpurged_archives(
    session: Session, org_id: int, category: RecordCategory, tz: tzinfo = UTC
) -> list[ArchiveTask]:
    """Persisted, non-superseded, not yet purged archives of org/category, oldest first."""
    stmt = (
        select(Archive)
        .where(
            Archive.org_id == org_id,
            Archive.archive_type == category.value,
            Archive.is_purged.is_(False),
            Archive.superseded_by_id.is_(None),
        )
        .order_by(Archive.start_date)
    )
    try:
        return [task_from_archive(a, tz) for a in session.scalars(stmt)]
    except SQLAlchemyError as e:
        raise TransientStoreError(
            "failed to read unpurged archives", details={"org_id": org_id, "category": category.value}
        ) from e
