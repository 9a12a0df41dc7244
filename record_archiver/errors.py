"""
Error types raised by the archiver.

- ArchiverError: base exception carrying a code and context details.
- TransientStoreError: hot-store read/write failed; retried on the next scheduled run.
- BuildError: serialization or filesystem failure while writing an artifact.
- ArchiveCancelled: the caller's cancellation signal fired mid-build.
- UploadError: long-term storage rejected or failed the upload.
- PersistenceError: the archive metadata row could not be inserted.
- PurgeError: originals could not be removed; the archive itself is durable.
- InvariantError: a caller broke a precondition (e.g. persisting an unbuilt task).

Only InvariantError is fatal to a run; the orchestrator records the others on the
task that hit them and moves on to the next window.
"""

from __future__ import annotations

from typing import Any


class ArchiverError(Exception):
    """Base exception for all archiver errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context (org_id, category, start, ...)
    """

    code = "ARCHIVER_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        ctx = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({ctx})"


class TransientStoreError(ArchiverError):
    """Reading from or writing to the hot store failed."""

    code = "TRANSIENT_STORE_ERROR"


class BuildError(ArchiverError):
    """Writing the compressed artifact failed; the partial file has been removed."""

    code = "BUILD_ERROR"


class ArchiveCancelled(ArchiverError):
    """Build aborted by the caller's cancellation signal."""

    code = "ARCHIVE_CANCELLED"


class UploadError(ArchiverError):
    """Upload to long-term storage failed."""

    code = "UPLOAD_ERROR"


class PersistenceError(ArchiverError):
    """Inserting archive metadata failed; the local artifact is kept."""

    code = "PERSISTENCE_ERROR"


class PurgeError(ArchiverError):
    """Removing archived originals from the hot store failed or was refused."""

    code = "PURGE_ERROR"


class InvariantError(ArchiverError):
    """A programming error: an operation was called with a task in the wrong state."""

    code = "INVARIANT_ERROR"
