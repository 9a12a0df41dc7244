"""
Archive builder: stream one window's records into a gzip-compressed JSONL file.

Archive format:
    <scratch_dir>/<org_id>_<category>_<period><date>_<random>.jsonl.gz

The gzip header carries no file name and a zero mtime, so the same records always give
the same bytes and the same md5. An empty window is a valid 20-byte gzip stream.

Invariants:
    - A task is either fully built (count, size, hash, path set) or untouched
    - A failed or cancelled build leaves no file behind
    - The md5 covers the compressed bytes as written to disk
    - Leftover files of an unarchived window are swept before it is rebuilt (discard_stale_artifacts)
"""

from __future__ import annotations

import gzip
import hashlib
import logging
import os
import tempfile
import threading
import time

from record_archiver.errors import ArchiveCancelled, BuildError, InvariantError
from record_archiver.serialization import serialize_record
from record_archiver.sources import RecordSource
from record_archiver.tasks import ArchiveTask, TaskState

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".jsonl.gz"
_HASH_CHUNK = 64 * 1024


def ensure_scratch_directory(path: str) -> None:
    """Create path (and parents) if absent; BuildError if it is a non-directory or not writable."""
    if os.path.exists(path) and not os.path.isdir(path):
        raise BuildError("scratch path exists and is not a directory", details={"path": path})
    try:
        os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise BuildError("cannot create scratch directory", details={"path": path}) from e
    if not os.access(path, os.W_OK):
        raise BuildError("scratch directory is not writable", details={"path": path})


def archive_file_prefix(task: ArchiveTask) -> str:
    """File name prefix identifying the task's window, e.g. 42_message_D20170810_."""
    return f"{task.org_id}_{task.category.value}_{task.granularity.label(task.start)}_"


def discard_stale_artifacts(task: ArchiveTask, scratch_dir: str) -> list[str]:
    """
    Remove artifacts of task's window left in scratch_dir by an earlier run.

    Only unarchived windows are rebuilt, so any file carrying the window's prefix is a
    leftover (a failed persist, or a release that could not delete it). Returns the
    paths that were removed.
    """
    prefix = archive_file_prefix(task)
    try:
        names = sorted(os.listdir(scratch_dir))
    except OSError as e:
        raise BuildError("cannot list scratch directory", details={**task.describe(), "dir": scratch_dir}) from e
    removed = []
    for name in names:
        if name.startswith(prefix) and name.endswith(ARCHIVE_SUFFIX):
            path = os.path.join(scratch_dir, name)
            if _discard(path):
                removed.append(path)
    if removed:
        logger.info("Removed stale archive files", extra={**task.describe(), "files": len(removed)})
    return removed


def build_archive(
    task: ArchiveTask,
    scratch_dir: str,
    source: RecordSource,
    *,
    compress_level: int = 9,
    cancel: threading.Event | None = None,
) -> ArchiveTask:
    """
    Build the artifact for task and populate record_count, size, hash, local_path.

    Args:
        task: Planned (unbuilt) task.
        scratch_dir: Existing writable directory (see ensure_scratch_directory).
        source: Where records are read from.
        compress_level: gzip level; part of the artifact's identity (changes the hash).
        cancel: Optional event; when set the build stops and discards its file.

    Returns:
        The same task, now BUILT.

    Raises:
        InvariantError: task was already built.
        ArchiveCancelled: cancel was set before the build finished.
        TransientStoreError: the source failed to read a page.
        BuildError: serialization or filesystem failure.
    """
    if task.is_built:
        raise InvariantError("archive task already built", details=task.describe())

    try:
        fd, path = tempfile.mkstemp(prefix=archive_file_prefix(task), suffix=ARCHIVE_SUFFIX, dir=scratch_dir)
    except OSError as e:
        raise BuildError("cannot create archive file", details={**task.describe(), "dir": scratch_dir}) from e

    started = time.monotonic()
    count = 0
    try:
        with os.fdopen(fd, "wb") as raw:
            # filename="" keeps the temp file's name out of the gzip header
            with gzip.GzipFile(filename="", mode="wb", fileobj=raw, compresslevel=compress_level, mtime=0) as gz:
                _check_cancelled(cancel, task)
                for record in source.stream(task.category, task.org_id, task.start, task.end):
                    _check_cancelled(cancel, task)
                    gz.write(serialize_record(record))
                    count += 1
        size, digest = _measure(path)
    except (OSError, TypeError, ValueError) as e:
        _discard(path)
        raise BuildError("failed to write archive", details=task.describe()) from e
    except BaseException:
        _discard(path)
        raise

    task.record_count = count
    task.size = size
    task.hash = digest
    task.local_path = path
    task.build_time_ms = int((time.monotonic() - started) * 1000)
    task.state = TaskState.BUILT
    logger.info(
        "Archive built",
        extra={**task.describe(), "records": count, "size": size, "hash": digest, "build_time_ms": task.build_time_ms},
    )
    return task


def _check_cancelled(cancel: threading.Event | None, task: ArchiveTask) -> None:
    if cancel is not None and cancel.is_set():
        raise ArchiveCancelled("archive build cancelled", details=task.describe())


def _measure(path: str) -> tuple[int, str]:
    """Size in bytes and md5 hex digest of the file at path."""
    md5 = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_HASH_CHUNK), b""):
            md5.update(chunk)
    return os.path.getsize(path), md5.hexdigest()


def _discard(path: str) -> bool:
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    except OSError:
        logger.warning("Could not remove archive file", extra={"path": path}, exc_info=True)
        return False
    return True
