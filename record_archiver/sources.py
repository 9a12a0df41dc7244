"""
Record sources: where the builder reads the records of one archive window from.

- RecordSource: protocol; stream(category, org_id, start, end) yields archive dicts in
  (created_at, id) order for records with start <= created_at < end.
- SqlRecordSource: hot-store implementation with keyset pagination. Each page is read in
  its own short-lived session and released before the next one, so memory is bounded by
  page_size no matter how large the window is.
- InMemoryRecordSource: list-backed stand-in for tests and local dev.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Protocol, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from record_archiver.errors import TransientStoreError
from record_archiver.models import Message, MessageAttachment, Run
from record_archiver.periods import as_utc
from record_archiver.serialization import message_record, run_record
from record_archiver.tasks import RecordCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CategoryTable:
    """How one record category maps onto hot-store tables."""

    model: Any
    serialize: Callable[[Any], dict[str, Any]]
    load_options: tuple = ()
    # child rows that must be deleted before their parent (model, fk column name)
    children: tuple[tuple[Any, str], ...] = ()


CATEGORY_TABLES: dict[RecordCategory, CategoryTable] = {
    RecordCategory.MESSAGE: CategoryTable(
        model=Message,
        serialize=message_record,
        load_options=(selectinload(Message.attachments),),
        children=((MessageAttachment, "message_id"),),
    ),
    RecordCategory.RUN: CategoryTable(model=Run, serialize=run_record),
}


def window_filter(model: Any, org_id: int, start: datetime, end: datetime):
    """WHERE clause selecting an org's rows with start <= created_at < end."""
    return and_(
        model.org_id == org_id,
        model.created_at >= as_utc(start),
        model.created_at < as_utc(end),
    )


class RecordSource(Protocol):
    """Protocol for anything the builder can stream window records from."""

    def stream(
        self, category: RecordCategory, org_id: int, start: datetime, end: datetime
    ) -> Iterator[dict[str, Any]]:
        """Yield archive dicts ordered by (created_at, id)."""
        ...


class SqlRecordSource:
    """
    Streams window records from the hot store with keyset pagination on (created_at, id).

    Raises TransientStoreError when a page cannot be read.
    """

    def __init__(self, session_factory: sessionmaker[Session], page_size: int = 1000) -> None:
        self._session_factory = session_factory
        self.page_size = page_size

    def stream(
        self, category: RecordCategory, org_id: int, start: datetime, end: datetime
    ) -> Iterator[dict[str, Any]]:
        table = CATEGORY_TABLES[category]
        after: tuple[datetime, Any] | None = None
        while True:
            page, after = self._read_page(table, org_id, start, end, after)
            yield from page
            if len(page) < self.page_size:
                return

    def _read_page(
        self,
        table: CategoryTable,
        org_id: int,
        start: datetime,
        end: datetime,
        after: tuple[datetime, Any] | None,
    ) -> tuple[list[dict[str, Any]], tuple[datetime, Any] | None]:
        model = table.model
        stmt = select(model).where(window_filter(model, org_id, start, end))
        if after is not None:
            last_created, last_id = after
            stmt = stmt.where(
                or_(
                    model.created_at > last_created,
                    and_(model.created_at == last_created, model.id > last_id),
                )
            )
        stmt = stmt.order_by(model.created_at, model.id).limit(self.page_size).options(*table.load_options)
        try:
            with self._session_factory() as session:
                rows = session.scalars(stmt).all()
                page = [table.serialize(row) for row in rows]
                if rows:
                    after = (rows[-1].created_at, rows[-1].id)
        except SQLAlchemyError as e:
            raise TransientStoreError(
                f"failed to read {model.__tablename__} page",
                details={"org_id": org_id, "start": as_utc(start).isoformat()},
            ) from e
        logger.debug(
            "Read hot-store page",
            extra={"table": model.__tablename__, "org_id": org_id, "rows": len(page)},
        )
        return page, after


class InMemoryRecordSource:
    """
    In-memory source for tests and local dev without a database.

    Records are plain dicts carrying at least org_id, created_at (datetime) and id; they
    are filtered and ordered like the SQL source and yielded with created_at formatted.
    """

    def __init__(self, records: dict[RecordCategory, Sequence[dict[str, Any]]] | None = None) -> None:
        self._records: dict[RecordCategory, list[dict[str, Any]]] = {
            category: list(rows) for category, rows in (records or {}).items()
        }

    def add(self, category: RecordCategory, record: dict[str, Any]) -> None:
        self._records.setdefault(category, []).append(record)

    def stream(
        self, category: RecordCategory, org_id: int, start: datetime, end: datetime
    ) -> Iterator[dict[str, Any]]:
        lo, hi = as_utc(start), as_utc(end)
        rows = [
            r
            for r in self._records.get(category, [])
            if r["org_id"] == org_id and lo <= as_utc(r["created_at"]) < hi
        ]
        rows.sort(key=lambda r: (as_utc(r["created_at"]), str(r["id"])))
        for r in rows:
            out = dict(r)
            out["id"] = str(r["id"])
            out["created_at"] = as_utc(r["created_at"]).isoformat()
            yield out
