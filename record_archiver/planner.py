"""
Gap detection: which archive windows of an org still need to be built.

plan_archive_tasks() is a pure function of its arguments. get_missing_archives() reads
the snapshot of already archived windows and resolves tenant overrides, then delegates.

Window bounds:
    lower = org.created_at truncated to its period start
    upper = (as_of - embargo) truncated to its period start
    a window [start, end) is offered only when end <= upper, so the period in progress
    at the upper bound is never archived early.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, tzinfo
from typing import AbstractSet

from sqlalchemy.orm import Session

from record_archiver.config import ArchiverConfig
from record_archiver.orgs import Org
from record_archiver.periods import UTC, Granularity, as_utc
from record_archiver.store import archived_starts
from record_archiver.tasks import ArchiveTask, RecordCategory

logger = logging.getLogger(__name__)


def plan_archive_tasks(
    as_of: datetime,
    org: Org,
    category: RecordCategory,
    archived: AbstractSet[datetime],
    *,
    granularity: Granularity,
    embargo_window: timedelta,
    tz: tzinfo = UTC,
) -> list[ArchiveTask]:
    """
    Enumerate the windows between org creation and the embargo bound that are not archived.

    Args:
        as_of: Reference time of the run.
        org: Organization snapshot.
        category: Record category.
        archived: Start instants of windows already covered by a non-superseded archive.
        granularity: Window length.
        embargo_window: Trailing window that is never archived.
        tz: Zone whose calendar defines period boundaries.

    Returns:
        Tasks ordered by start, non-overlapping, each ending at or before the upper bound.
        Empty if the org was created after the upper bound.
    """
    covered = {as_utc(s) for s in archived}
    upper = granularity.truncate(as_utc(as_of) - embargo_window, tz)
    start = granularity.truncate(org.created_at, tz)

    tasks = []
    while True:
        end = granularity.advance(start, tz)
        if end > upper:
            break
        if start not in covered:
            tasks.append(
                ArchiveTask(org_id=org.id, category=category, granularity=granularity, start=start, end=end)
            )
        start = end
    return tasks


def get_missing_archives(
    session: Session,
    as_of: datetime,
    org: Org,
    category: RecordCategory,
    config: ArchiverConfig,
) -> list[ArchiveTask]:
    """Plan org/category against the archives already stored. Raises TransientStoreError."""
    granularity = config.granularity_for(category, org.config)
    embargo = config.embargo_for(org.config)
    archived = archived_starts(session, org.id, category, granularity)
    tasks = plan_archive_tasks(
        as_of,
        org,
        category,
        archived,
        granularity=granularity,
        embargo_window=embargo,
        tz=config.tz,
    )
    logger.debug(
        "Planned archive tasks",
        extra={"org_id": org.id, "category": category.value, "period": granularity.value, "tasks": len(tasks)},
    )
    return tasks
