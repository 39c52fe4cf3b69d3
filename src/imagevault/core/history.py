"""Per-user generation history.

One row is appended per successful generation::

    {"user_id": ..., "prompt": ..., "image_path": ..., "created_at": ...}

Only the immutable object path is stored; signed URLs are derived on demand
when history is displayed.  Rows written by older clients may carry an
``image_url`` instead of a path, and those are passed through unchanged.

Recording happens strictly after the upload succeeded, so a row never points
at an object that was not written.  The reverse is not guaranteed: if the
insert fails the object stays in storage with no row referencing it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from imagevault.core.auth import AuthContext
from imagevault.core.backends.base import StorageBackend
from imagevault.core.errors import PathNotFound, PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class HistoryRecord:
    id: str
    user_id: str
    prompt: str
    path: str | None
    created_at: str | None
    image_url: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> HistoryRecord:
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            prompt=row.get("prompt") or "",
            path=row.get("image_path"),
            created_at=str(row["created_at"]) if row.get("created_at") else None,
            image_url=row.get("image_url"),
        )


class HistoryRecorder:
    """Reads and writes the history table on behalf of one caller at a time.

    Args:
        backend: Backend holding the table (and the objects, for deletes).
        table: History table name.
        bucket: Bucket holding the referenced objects.
    """

    def __init__(self, backend: StorageBackend, table: str, bucket: str) -> None:
        self.backend = backend
        self.table = table
        self.bucket = bucket

    def record(self, auth: AuthContext, prompt: str, path: str) -> HistoryRecord:
        """Append a history row for a successful generation.

        Raises:
            PersistenceError: If the insert fails.
        """
        row = {"user_id": auth.user_id, "prompt": prompt, "image_path": path}
        try:
            stored = self.backend.insert_row(self.table, row)
        except Exception as e:
            raise PersistenceError(f"Failed to save image to history: {e}") from e
        logger.info("Recorded history entry for %s", auth.user_id)
        return HistoryRecord.from_row({**row, **stored})

    def list_records(self, auth: AuthContext) -> list[HistoryRecord]:
        """Return the caller's records, newest first.

        Raises:
            PersistenceError: If the table cannot be read.
        """
        try:
            rows = self.backend.select_rows(
                self.table,
                {"user_id": auth.user_id},
                order_by="created_at",
                descending=True,
            )
        except Exception as e:
            raise PersistenceError("Failed to load image history") from e
        return [HistoryRecord.from_row(row) for row in rows]

    def get_record(self, auth: AuthContext, record_id: str) -> HistoryRecord:
        """Return one of the caller's records.

        Raises:
            PathNotFound: If the record does not exist or belongs to someone else.
            PersistenceError: If the table cannot be read.
        """
        try:
            rows = self.backend.select_rows(
                self.table, {"id": record_id, "user_id": auth.user_id}
            )
        except Exception as e:
            raise PersistenceError("Failed to load image history") from e
        if not rows:
            raise PathNotFound("Image not found")
        return HistoryRecord.from_row(rows[0])

    def delete_record(self, auth: AuthContext, record_id: str) -> HistoryRecord:
        """Delete one of the caller's records and its stored object.

        The row is deleted first.  If removing the object then fails, the
        failure is logged and the delete still counts as done.

        Raises:
            PathNotFound: If the record does not exist or belongs to someone else.
            PersistenceError: If the row cannot be deleted.
        """
        record = self.get_record(auth, record_id)
        try:
            self.backend.delete_rows(self.table, {"id": record_id, "user_id": auth.user_id})
        except Exception as e:
            raise PersistenceError("Failed to delete image") from e

        if record.path:
            try:
                self.backend.remove(self.bucket, [record.path])
            except Exception as e:
                logger.error("Failed to remove stored object %s: %s", record.path, e)

        logger.info("Deleted history entry %s for %s", record_id, auth.user_id)
        return record


def paginate_records(records: list, page: int, per_page: int) -> dict:
    """Paginate records and clamp the requested page to valid bounds.

    Clamping keeps the last page valid after a delete removes its final item.

    Args:
        records: Records in display order.
        page: Requested one-based page number.
        per_page: Requested items per page.

    Returns:
        Dictionary containing ``total``, ``page``, ``per_page``, ``pages``, and
        ``items`` for the resolved page.
    """
    per_page = max(per_page, 1)
    total = len(records)
    pages = (total + per_page - 1) // per_page if total > 0 else 1
    resolved_page = min(max(page, 1), pages)

    start = (resolved_page - 1) * per_page
    end = start + per_page

    return {
        "total": total,
        "page": resolved_page,
        "per_page": per_page,
        "pages": pages,
        "items": records[start:end],
    }
