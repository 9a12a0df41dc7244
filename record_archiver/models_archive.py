"""Archive table: one row per archived (org, type, start, period) window."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from record_archiver.base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Archive(Base):
    """
    Metadata of an archived window.

    Rows are never updated after insert except is_purged/purged_at, which flip once
    when the originals are deleted. A row with superseded_by_id set no longer counts
    as covering its window.
    """

    __tablename__ = "archives"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("orgs.id"), nullable=False)
    archive_type: Mapped[str] = mapped_column(String(16), nullable=False)  # message, run
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period: Mapped[str] = mapped_column(String(1), nullable=False)  # D, M
    record_count: Mapped[int] = mapped_column(Integer, nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    hash: Mapped[str] = mapped_column(String(32), nullable=False)  # md5 hex of the compressed bytes
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    build_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_purged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    purged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    superseded_by_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("archives.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)

    __table_args__ = (
        Index(
            "uq_archives_window",
            "org_id",
            "archive_type",
            "start_date",
            "period",
            unique=True,
            postgresql_where=text("superseded_by_id IS NULL"),
            sqlite_where=text("superseded_by_id IS NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<Archive id={self.id} org={self.org_id} {self.archive_type} {self.period}{self.start_date:%Y%m%d}>"
