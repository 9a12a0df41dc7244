"""
Purge: delete hot-store rows covered by a durable archive.

The whole purge of one window is a single transaction:
  1. lock in the archive row; already purged -> nothing to do
  2. refuse if the archive has no remote copy (when required)
  3. count the window's rows; refuse if it differs from the archived record_count
     (rows were added or removed after the build, the archive would not match)
  4. delete child rows, then the rows, in id-ordered batches
  5. flip is_purged / purged_at and write an audit entry

A refused or failed purge leaves both the rows and the archive untouched, so it can be
retried on a later run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from record_archiver.db import log_audit, session_scope
from record_archiver.errors import InvariantError, PurgeError
from record_archiver.models_archive import Archive
from record_archiver.sources import CATEGORY_TABLES, window_filter
from record_archiver.tasks import ArchiveTask, TaskState

logger = logging.getLogger(__name__)


def purge_window(
    session_factory: sessionmaker[Session],
    task: ArchiveTask,
    *,
    require_url: bool = True,
    batch_size: int = 500,
) -> int:
    """
    Delete the originals of a persisted archive window and mark the archive purged.

    Args:
        session_factory: Hot-store session factory.
        task: Persisted task (archive_id set).
        require_url: Refuse archives without a remote url.
        batch_size: Rows deleted per statement.

    Returns:
        Number of rows deleted (0 if the archive was already purged).

    Raises:
        InvariantError: task has no persisted archive.
        PurgeError: refused (no remote copy, count mismatch) or the delete failed.
    """
    if not task.is_persisted:
        raise InvariantError("cannot purge a window without a persisted archive", details=task.describe())

    table = CATEGORY_TABLES[task.category]
    model = table.model
    window = window_filter(model, task.org_id, task.start, task.end)
    deleted = 0
    try:
        with session_scope(session_factory) as session:
            archive = session.get(Archive, task.archive_id, with_for_update=True)
            if archive is None:
                raise InvariantError("archive row not found", details={**task.describe(), "archive_id": task.archive_id})
            if archive.is_purged:
                task.is_purged = True
                task.state = TaskState.PURGED
                return 0
            if require_url and not archive.url:
                raise PurgeError("archive has no remote copy", details={**task.describe(), "archive_id": archive.id})

            count = session.scalar(select(func.count()).select_from(model).where(window))
            if count != archive.record_count:
                raise PurgeError(
                    "hot-store row count does not match archive",
                    details={**task.describe(), "archived": archive.record_count, "found": count},
                )

            while True:
                ids = session.scalars(select(model.id).where(window).order_by(model.id).limit(batch_size)).all()
                if not ids:
                    break
                for child, fk in table.children:
                    session.execute(
                        delete(child).where(getattr(child, fk).in_(ids)),
                        execution_options={"synchronize_session": False},
                    )
                session.execute(
                    delete(model).where(model.id.in_(ids)),
                    execution_options={"synchronize_session": False},
                )
                deleted += len(ids)

            session.execute(
                update(Archive)
                .where(Archive.id == archive.id, Archive.is_purged.is_(False))
                .values(is_purged=True, purged_at=datetime.now(timezone.utc))
            )
            log_audit(session, "archive.purged", "archive", archive.id, details={**task.describe(), "deleted": deleted})
    except SQLAlchemyError as e:
        raise PurgeError("failed to purge archived rows", details=task.describe()) from e

    task.is_purged = True
    task.state = TaskState.PURGED
    logger.info("Archived rows purged", extra={**task.describe(), "archive_id": task.archive_id, "deleted": deleted})
    return deleted
