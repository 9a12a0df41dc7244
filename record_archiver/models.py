"""
SQLAlchemy models for the hot store: orgs, messages, message_attachments, runs.

- orgs: tenants; created_at is the lower bound for archiving, config holds per-tenant overrides.
- messages: include embedding VECTOR(1536) (pgvector); archived with their attachments inlined.
- runs: flow runs; path/results are JSON documents archived as-is.

Archived windows are selected on created_at and streamed in (created_at, id) order, so both
record tables carry an (org_id, created_at, id) index.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pgvector.sqlalchemy import Vector

from record_archiver.base import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class Org(Base):
    """Tenant organization; only active orgs are archived."""

    __tablename__ = "orgs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    config: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    def __repr__(self) -> str:
        return f"<Org id={self.id} active={self.is_active}>"


class Message(Base):
    """Single message of an org; may hold an embedding for semantic search."""

    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("orgs.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)  # user, assistant, system
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="handled")
    embedding: Mapped[list[float] | None] = mapped_column(Vector(1536), nullable=True)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)

    attachments = relationship(
        "MessageAttachment",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageAttachment.position",
    )

    __table_args__ = (Index("ix_messages_org_created", "org_id", "created_at", "id"),)

    def __repr__(self) -> str:
        return f"<Message id={self.id} role={self.role}>"


class MessageAttachment(Base):
    """Media attached to a message; inlined into the message's archive line."""

    __tablename__ = "message_attachments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    message_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)

    message = relationship("Message", back_populates="attachments")

    __table_args__ = (Index("ix_message_attachments_message_id", "message_id"),)


class Run(Base):
    """Flow run of an org; path and results are stored as JSON."""

    __tablename__ = "runs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("orgs.id"), nullable=False)
    flow: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # active, completed, interrupted, expired
    responded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    path: Mapped[list[Any] | None] = mapped_column(JSONType, nullable=True)
    results: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utc_now)
    exited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_runs_org_created", "org_id", "created_at", "id"),)

    def __repr__(self) -> str:
        return f"<Run id={self.id} flow={self.flow} status={self.status}>"
