"""Active organizations eligible for archiving."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from record_archiver.errors import TransientStoreError
from record_archiver.models import Org as OrgRow
from record_archiver.periods import as_utc


@dataclass(frozen=True)
class Org:
    """Read-only snapshot of an orgs row; created_at is aware UTC."""

    id: int
    name: str
    created_at: datetime
    is_active: bool = True
    config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: OrgRow) -> Org:
        return cls(
            id=row.id,
            name=row.name,
            created_at=as_utc(row.created_at),
            is_active=row.is_active,
            config=dict(row.config or {}),
        )


def get_active_orgs(session: Session) -> list[Org]:
    """Return active orgs ordered by id. Raises TransientStoreError if the query fails."""
    stmt = select(OrgRow).where(OrgRow.is_active.is_(True)).order_by(OrgRow.id)
    try:
        return [Org.from_row(row) for row in session.scalars(stmt)]
    except SQLAlchemyError as e:
        raise TransientStoreError("failed to list active orgs") from e
