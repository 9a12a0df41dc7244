"""
Archive task types: record categories, task states and the ArchiveTask unit of work.

An ArchiveTask is one (org, category, granularity, start) window. The planner creates
it in PLANNED state; the builder, uploader, store and purger each fill in their part
and advance `state`. A failed step leaves `state` at the last step that succeeded and
records the failure in `error` / `failed_step`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from record_archiver.periods import Granularity


class RecordCategory(Enum):
    """Kind of hot-store record that is archived; value is stored in archives.archive_type."""

    MESSAGE = "message"
    RUN = "run"

    @classmethod
    def parse(cls, value: str | RecordCategory) -> RecordCategory:
        if isinstance(value, RecordCategory):
            return value
        return cls(value.strip().lower())

    @property
    def default_granularity(self) -> Granularity:
        return DEFAULT_GRANULARITY[self]


DEFAULT_GRANULARITY = {
    RecordCategory.MESSAGE: Granularity.DAY,
    RecordCategory.RUN: Granularity.DAY,
}


class TaskState(Enum):
    PLANNED = "planned"
    BUILT = "built"
    UPLOADED = "uploaded"
    PERSISTED = "persisted"
    PURGED = "purged"


@dataclass
class ArchiveTask:
    """
    One archive window for one organization and category.

    start is inclusive and end exclusive; both are aware UTC datetimes.
    """

    org_id: int
    category: RecordCategory
    granularity: Granularity
    start: datetime
    end: datetime

    # set by the builder
    record_count: int | None = None
    size: int | None = None
    hash: str | None = None
    local_path: str | None = None
    build_time_ms: int | None = None

    # set by the uploader
    url: str | None = None

    # set by the store
    archive_id: int | None = None
    is_purged: bool = False
    created_at: datetime | None = None

    state: TaskState = TaskState.PLANNED
    error: str | None = None
    failed_step: str | None = None

    @property
    def is_built(self) -> bool:
        return self.record_count is not None and self.size is not None and self.hash is not None

    @property
    def is_persisted(self) -> bool:
        return self.archive_id is not None

    def fail(self, step: str, exc: Exception) -> None:
        self.failed_step = step
        self.error = str(exc)

    def describe(self) -> dict[str, object]:
        """Context dict for log records and error details."""
        return {
            "org_id": self.org_id,
            "category": self.category.value,
            "period": self.granularity.value,
            "start": self.start.isoformat(),
        }

    def __repr__(self) -> str:
        return (
            f"<ArchiveTask org={self.org_id} {self.category.value} "
            f"{self.granularity.value} start={self.start.isoformat()} state={self.state.value}>"
        )
