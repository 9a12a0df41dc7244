"""
Record archiver: periodic, exactly-once archiving of per-org hot-store records.

Planning (gap detection):
  Granularity, RecordCategory, ArchiveTask, TaskState
  plan_archive_tasks, get_missing_archives, get_active_orgs, Org

Building and storing:
  build_archive, ensure_scratch_directory, discard_stale_artifacts, SqlRecordSource, InMemoryRecordSource
  persist_archive, release_archive, purge_window, iter_archive_records

Long-term storage (S3 / BOS / OSS):
  InMemoryLongTermStorage, S3CompatibleStorage, BosStorage, OssStorage
  archive_key, upload_archive, create_storage_backend_from_config

Orchestration:
  ArchiverConfig, archive_org, archive_active_orgs, purge_outstanding

Database (PostgreSQL + pgvector):
  Base, Message, MessageAttachment, Run, Archive, AuditLog (orgs table: models.Org)
  create_engine, create_session_factory, init_db, session_scope, log_audit
"""

from record_archiver.base import Base
from record_archiver.builder import build_archive, discard_stale_artifacts, ensure_scratch_directory
from record_archiver.config import ArchiverConfig
from record_archiver.db import create_engine, create_session_factory, init_db, log_audit, session_scope
from record_archiver.errors import (
    ArchiveCancelled,
    ArchiverError,
    BuildError,
    InvariantError,
    PersistenceError,
    PurgeError,
    TransientStoreError,
    UploadError,
)
from record_archiver.long_term_storage import (
    BosStorage,
    InMemoryLongTermStorage,
    OssStorage,
    S3CompatibleStorage,
    archive_key,
    create_storage_backend_from_config,
    upload_archive,
)
from record_archiver.models import Message, MessageAttachment, Run
from record_archiver.models_archive import Archive
from record_archiver.models_audit import AuditLog
from record_archiver.orchestrator import archive_active_orgs, archive_org, purge_outstanding
from record_archiver.orgs import Org, get_active_orgs
from record_archiver.periods import Granularity
from record_archiver.planner import get_missing_archives, plan_archive_tasks
from record_archiver.purger import purge_window
from record_archiver.serialization import iter_archive_records
from record_archiver.sources import InMemoryRecordSource, SqlRecordSource
from record_archiver.store import persist_archive, release_archive
from record_archiver.tasks import ArchiveTask, RecordCategory, TaskState

__all__ = [
    "Archive",
    "ArchiveCancelled",
    "ArchiveTask",
    "ArchiverConfig",
    "ArchiverError",
    "AuditLog",
    "Base",
    "BosStorage",
    "BuildError",
    "Granularity",
    "InMemoryLongTermStorage",
    "InMemoryRecordSource",
    "InvariantError",
    "Message",
    "MessageAttachment",
    "Org",
    "OssStorage",
    "PersistenceError",
    "PurgeError",
    "RecordCategory",
    "Run",
    "S3CompatibleStorage",
    "SqlRecordSource",
    "TaskState",
    "TransientStoreError",
    "UploadError",
    "archive_active_orgs",
    "archive_key",
    "archive_org",
    "build_archive",
    "create_engine",
    "create_session_factory",
    "create_storage_backend_from_config",
    "discard_stale_artifacts",
    "ensure_scratch_directory",
    "get_active_orgs",
    "get_missing_archives",
    "init_db",
    "iter_archive_records",
    "log_audit",
    "persist_archive",
    "plan_archive_tasks",
    "purge_outstanding",
    "purge_window",
    "release_archive",
    "session_scope",
    "upload_archive",
]
