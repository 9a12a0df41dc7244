"""
Archive line format.

- Each archived record is one JSON object per line (JSONL), UTF-8, ensure_ascii=False.
- Timestamps are ISO 8601 in UTC; ids are strings.
- Associated rows (message attachments) are inlined so a line is self-contained.
- iter_archive_records / parse_archive_lines read a built artifact back (verification, restore).
"""

from __future__ import annotations

import gzip
import json
from datetime import datetime
from typing import Any, Iterable, Iterator

from record_archiver.periods import as_utc


def format_timestamp(value: datetime | None) -> str | None:
    """ISO 8601 UTC timestamp (e.g. 2017-08-12T21:11:59.890662+00:00), or None."""
    if value is None:
        return None
    return as_utc(value).isoformat()


def serialize_record(record: dict[str, Any]) -> bytes:
    """Encode one record as a JSONL line (with trailing newline)."""
    return json.dumps(record, ensure_ascii=False).encode("utf-8") + b"\n"


def parse_archive_lines(raw: bytes) -> list[dict[str, Any]]:
    """Decode JSONL bytes to records. Empty lines skipped."""
    result = []
    for line in raw.decode("utf-8").split("\n"):
        line = line.strip()
        if not line:
            continue
        result.append(json.loads(line))
    return result


def iter_archive_records(path: str) -> Iterator[dict[str, Any]]:
    """Stream the records of a gzip-compressed archive file without loading it whole."""
    with gzip.open(path, "rt", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield json.loads(line)


def message_record(message: Any) -> dict[str, Any]:
    """
    Archive representation of a messages row with its attachments inlined.

    Args:
        message: Message ORM instance (or any object with the same attributes).

    Returns:
        Dict ready for serialize_record(). Key order is fixed so identical rows
        always produce identical bytes.
    """
    return {
        "id": str(message.id),
        "org_id": message.org_id,
        "role": message.role,
        "content": message.content,
        "status": message.status,
        "metadata": message.metadata_,
        "embedding": _embedding(message.embedding),
        "attachments": [
            {"content_type": a.content_type, "url": a.url} for a in message.attachments
        ],
        "created_at": format_timestamp(message.created_at),
    }


def run_record(run: Any) -> dict[str, Any]:
    """Archive representation of a runs row."""
    return {
        "id": str(run.id),
        "org_id": run.org_id,
        "flow": run.flow,
        "status": run.status,
        "responded": run.responded,
        "path": run.path,
        "results": run.results,
        "created_at": format_timestamp(run.created_at),
        "exited_at": format_timestamp(run.exited_at),
    }


def _embedding(value: Iterable[float] | None) -> list[float] | None:
    # pgvector returns numpy arrays; keep the archive plain JSON
    if value is None:
        return None
    return [float(x) for x in value]
