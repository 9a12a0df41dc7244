"""
Archive orchestration.

archive_org() runs one org/category through
    plan -> build -> upload (if enabled) -> persist -> purge (if enabled)
one window at a time in ascending start order. A failing step stops that window only:
the failure is recorded on the task (error, failed_step) and the next window is tried.

archive_active_orgs() fans out over active orgs on a bounded thread pool; the windows of
one org are never processed concurrently.

Only InvariantError escapes; store outages while planning are logged per org/category and
retried by the next scheduled run.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from sqlalchemy.orm import Session, sessionmaker

from record_archiver.builder import build_archive, discard_stale_artifacts, ensure_scratch_directory
from record_archiver.config import ArchiverConfig
from record_archiver.errors import (
    ArchiveCancelled,
    BuildError,
    InvariantError,
    PersistenceError,
    PurgeError,
    TransientStoreError,
    UploadError,
)
from record_archiver.long_term_storage import LongTermStorageBackend, upload_archive
from record_archiver.orgs import Org, get_active_orgs
from record_archiver.planner import get_missing_archives
from record_archiver.purger import purge_window
from record_archiver.sources import RecordSource, SqlRecordSource
from record_archiver.store import get_unpurged_archives, persist_archive, release_archive
from record_archiver.tasks import ArchiveTask, RecordCategory

logger = logging.getLogger(__name__)


def archive_org(
    as_of: datetime,
    config: ArchiverConfig,
    session_factory: sessionmaker[Session],
    storage: LongTermStorageBackend | None,
    org: Org,
    category: RecordCategory,
    *,
    cancel: threading.Event | None = None,
    source: RecordSource | None = None,
) -> list[ArchiveTask]:
    """
    Archive every missing window of org/category.

    Args:
        as_of: Reference time for planning.
        config: Archiver settings.
        session_factory: Hot-store session factory.
        storage: Long-term storage; required when config.upload_enabled.
        org: Organization snapshot.
        category: Record category.
        cancel: Optional event; stops the run after discarding the in-flight build.
        source: Record source override (defaults to the hot store).

    Returns:
        Tasks attempted, in start order, each in the last state it reached.

    Raises:
        TransientStoreError: planning could not read the hot store.
        InvariantError: misconfiguration or a broken precondition.
    """
    if config.upload_enabled and storage is None:
        raise InvariantError("upload enabled but no long-term storage given")
    if source is None:
        source = SqlRecordSource(session_factory, page_size=config.page_size)

    with session_factory() as session:
        tasks = get_missing_archives(session, as_of, org, category, config)

    processed = []
    for task in tasks:
        if cancel is not None and cancel.is_set():
            break
        try:
            _process_task(task, config, session_factory, storage, source, cancel)
        except ArchiveCancelled:
            logger.info("Archive run cancelled", extra=task.describe())
            break
        processed.append(task)

    _log_summary(org, category, processed)
    return processed


def _process_task(
    task: ArchiveTask,
    config: ArchiverConfig,
    session_factory: sessionmaker[Session],
    storage: LongTermStorageBackend | None,
    source: RecordSource,
    cancel: threading.Event | None,
) -> None:
    try:
        discard_stale_artifacts(task, config.scratch_dir)
        build_archive(task, config.scratch_dir, source, compress_level=config.compress_level, cancel=cancel)
    except (BuildError, TransientStoreError) as e:
        logger.error("Archive build failed", extra={**task.describe(), "error": str(e)})
        task.fail("build", e)
        return

    if config.upload_enabled:
        try:
            upload_archive(storage, task)
        except UploadError as e:
            logger.error("Archive upload failed", extra={**task.describe(), "error": str(e)})
            task.fail("upload", e)
            release_archive(task)
            return

    try:
        persist_archive(session_factory, task, require_url=config.upload_enabled)
    except PersistenceError as e:
        # the artifact stays on disk until the re-offered window is rebuilt
        logger.error(
            "Archive persist failed", extra={**task.describe(), "error": str(e), "path": task.local_path}
        )
        task.fail("persist", e)
        return

    if config.upload_enabled:
        release_archive(task)

    if config.purge_enabled:
        _purge(task, config, session_factory)


def _purge(task: ArchiveTask, config: ArchiverConfig, session_factory: sessionmaker[Session]) -> None:
    try:
        purge_window(
            session_factory, task, require_url=config.upload_enabled, batch_size=config.purge_batch_size
        )
    except PurgeError as e:
        logger.warning("Archive purge failed", extra={**task.describe(), "error": str(e)})
        task.fail("purge", e)


def purge_outstanding(
    config: ArchiverConfig,
    session_factory: sessionmaker[Session],
    org: Org,
    category: RecordCategory,
) -> list[ArchiveTask]:
    """Retry the purge of org/category archives persisted earlier but not yet purged."""
    if not config.purge_enabled:
        return []
    with session_factory() as session:
        tasks = get_unpurged_archives(session, org.id, category, config.tz)
    for task in tasks:
        _purge(task, config, session_factory)
    return tasks


def archive_active_orgs(
    as_of: datetime,
    config: ArchiverConfig,
    session_factory: sessionmaker[Session],
    storage: LongTermStorageBackend | None = None,
    *,
    cancel: threading.Event | None = None,
) -> dict[int, list[ArchiveTask]]:
    """
    Archive every configured category of every active org.

    Returns:
        Processed tasks per org id.
    """
    ensure_scratch_directory(config.scratch_dir)
    with session_factory() as session:
        orgs = get_active_orgs(session)
    logger.info("Archiving active orgs", extra={"orgs": len(orgs), "as_of": as_of.isoformat()})

    results: dict[int, list[ArchiveTask]] = {}
    with ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="archiver") as pool:
        futures = {
            org.id: pool.submit(_archive_org_categories, as_of, config, session_factory, storage, org, cancel)
            for org in orgs
        }
        for org_id, future in futures.items():
            results[org_id] = future.result()
    return results


def _archive_org_categories(
    as_of: datetime,
    config: ArchiverConfig,
    session_factory: sessionmaker[Session],
    storage: LongTermStorageBackend | None,
    org: Org,
    cancel: threading.Event | None,
) -> list[ArchiveTask]:
    processed: list[ArchiveTask] = []
    for category in config.categories:
        if cancel is not None and cancel.is_set():
            break
        try:
            # earlier windows whose purge failed go first, keeping purges in start order
            purge_outstanding(config, session_factory, org, category)
            processed.extend(archive_org(as_of, config, session_factory, storage, org, category, cancel=cancel))
        except TransientStoreError as e:
            logger.error(
                "Archiving org failed", extra={"org_id": org.id, "category": category.value, "error": str(e)}
            )
    return processed


def _log_summary(org: Org, category: RecordCategory, tasks: list[ArchiveTask]) -> None:
    failed = [t for t in tasks if t.error]
    logger.info(
        "Archived org",
        extra={
            "org_id": org.id,
            "category": category.value,
            "tasks": len(tasks),
            "failed": len(failed),
            "records": sum(t.record_count or 0 for t in tasks),
            "bytes": sum(t.size or 0 for t in tasks),
        },
    )
