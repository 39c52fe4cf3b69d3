"""Self-contained backend for development and tests.

Objects are written under ``local_storage_dir/<bucket>/<path>``; object
metadata and the history/profile tables live in a single SQLite database next
to them.  Bearer tokens come from ``IMAGEVAULT_LOCAL_TOKENS`` and signed URLs
are HMAC-SHA256 capability tokens served by the API's
``/storage/v1/object/sign/...`` route.

Signed URL token format::

    <expires_at>.<nonce>.<hex hmac over "bucket/path:expires_at:nonce">

The nonce makes every issued URL distinct while all of them stay valid until
their own expiry.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import sqlite3
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from urllib.parse import quote

from imagevault.core.auth import AuthContext
from imagevault.core.backends.base import StorageBackend, backend_registry
from imagevault.core.config import ImageVaultConfig
from imagevault.core.errors import (
    PathNotFound,
    SignedUrlRejected,
    SigningFailed,
    UploadFailed,
)

logger = logging.getLogger(__name__)

DB_FILENAME = "imagevault.db"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalBackend(StorageBackend):
    """Filesystem + SQLite implementation of :class:`StorageBackend`.

    Attributes:
        root: Storage root directory.
        db_path: SQLite database path.
    """

    name = "local"

    def __init__(self, config: ImageVaultConfig) -> None:
        super().__init__(config)
        config.require_backend_settings()

        self.root = Path(config.local_storage_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.db_path = self.root / DB_FILENAME
        self._key = config.local_signing_key.encode("utf-8")
        self._write_lock = threading.Lock()

        # Column whitelist per table; filters and inserts are checked against it.
        self._columns: dict[str, tuple[str, ...]] = {
            config.history_table: (
                "id",
                "user_id",
                "prompt",
                "image_path",
                "image_url",
                "created_at",
            ),
            config.profiles_table: ("id", "name", "email", "created_at", "updated_at"),
        }
        self._initialize_db()
        logger.info("Initialized local backend at %s", self.root)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        history = self.config.history_table
        profiles = self.config.profiles_table
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS storage_objects (
                    bucket TEXT NOT NULL,
                    path TEXT NOT NULL,
                    content_type TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    cache_control TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (bucket, path)
                )
                """)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS "{history}" (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    image_path TEXT,
                    image_url TEXT,
                    created_at TEXT NOT NULL
                )
                """)
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS "idx_{history}_user_created"
                ON "{history}"(user_id, created_at DESC)
                """)
            conn.execute(f"""
                CREATE TABLE IF NOT EXISTS "{profiles}" (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """)

    # -- Auth -----------------------------------------------------------------

    def get_user(self, access_token: str) -> AuthContext | None:
        user_id = self.config.local_tokens.get(access_token)
        if user_id is None:
            return None
        return AuthContext(user_id=user_id, access_token=access_token)

    # -- Object storage -------------------------------------------------------

    def _object_file(self, bucket: str, path: str) -> Path:
        """Map an object key to a file, refusing keys that escape the bucket."""
        bucket_dir = (self.root / bucket).resolve()
        target = (bucket_dir / path).resolve()
        if not path or not str(target).startswith(str(bucket_dir) + "/"):
            logger.warning("Rejected object path outside bucket: %s", path)
            raise PathNotFound(f"Object not found: {path}")
        return target

    def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        cache_control: str = "3600",
        upsert: bool = False,
    ) -> None:
        try:
            target = self._object_file(bucket, path)
        except PathNotFound as e:
            raise UploadFailed(f"Invalid object path: {path}") from e

        target.parent.mkdir(parents=True, exist_ok=True)
        mode = "wb" if upsert else "xb"
        try:
            with open(target, mode) as handle:
                handle.write(data)
        except FileExistsError as e:
            raise UploadFailed(f"The resource already exists: {path}") from e
        except OSError as e:
            raise UploadFailed(f"Upload failed: {e}") from e

        with self._write_lock, self._connect() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO storage_objects
                    (bucket, path, content_type, size, cache_control, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (bucket, path, content_type, len(data), cache_control, _utc_now_iso()),
            )
        logger.debug("Stored %d bytes at %s/%s", len(data), bucket, path)

    def _object_meta(self, bucket: str, path: str) -> sqlite3.Row | None:
        with self._connect() as conn:
            return conn.execute(
                "SELECT * FROM storage_objects WHERE bucket = ? AND path = ?",
                (bucket, path),
            ).fetchone()

    def _signature(self, bucket: str, path: str, expires_at: int, nonce: str) -> str:
        message = f"{bucket}/{path}:{expires_at}:{nonce}".encode()
        return hmac.new(self._key, message, "sha256").hexdigest()

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        if expires_in <= 0:
            raise SigningFailed("expires_in must be positive")
        if self._object_meta(bucket, path) is None:
            raise PathNotFound(f"Object not found: {path}")

        expires_at = int(self.clock()) + int(expires_in)
        nonce = secrets.token_hex(8)
        token = f"{expires_at}.{nonce}.{self._signature(bucket, path, expires_at, nonce)}"
        base = self.config.public_base_url.rstrip("/")
        return f"{base}/storage/v1/object/sign/{bucket}/{quote(path)}?token={token}"

    def resolve_signed_url(self, bucket: str, path: str, token: str) -> tuple[bytes, str]:
        """Return the object bytes and content type for a valid signed URL.

        Raises:
            SignedUrlRejected: If the token is malformed, forged, or expired.
            PathNotFound: If the object no longer exists.
        """
        try:
            expires_raw, nonce, signature = token.split(".")
            expires_at = int(expires_raw)
        except ValueError as e:
            raise SignedUrlRejected("Invalid signature") from e

        expected = self._signature(bucket, path, expires_at, nonce)
        if not secrets.compare_digest(expected, signature):
            raise SignedUrlRejected("Invalid signature")
        if self.clock() >= expires_at:
            raise SignedUrlRejected("Signed URL has expired")

        meta = self._object_meta(bucket, path)
        target = self._object_file(bucket, path)
        if meta is None or not target.exists():
            raise PathNotFound(f"Object not found: {path}")
        return target.read_bytes(), meta["content_type"]

    def remove(self, bucket: str, paths: list[str]) -> None:
        for path in paths:
            try:
                target = self._object_file(bucket, path)
            except PathNotFound:
                continue
            target.unlink(missing_ok=True)
            with self._write_lock, self._connect() as conn:
                conn.execute(
                    "DELETE FROM storage_objects WHERE bucket = ? AND path = ?",
                    (bucket, path),
                )
            logger.debug("Removed %s/%s", bucket, path)

    # -- Tables ---------------------------------------------------------------

    def _check_columns(self, table: str, columns) -> None:
        known = self._columns.get(table)
        if known is None:
            raise ValueError(f"Unknown table: {table}")
        unknown = [c for c in columns if c not in known]
        if unknown:
            raise ValueError(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    @staticmethod
    def _where(filters: dict[str, Any]) -> tuple[str, list[Any]]:
        if not filters:
            return "", []
        clause = " AND ".join(f'"{column}" = ?' for column in filters)
        return f" WHERE {clause}", list(filters.values())

    def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        stored = dict(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", _utc_now_iso())
        if table == self.config.profiles_table:
            stored.setdefault("updated_at", stored["created_at"])
        self._check_columns(table, stored)

        columns = ", ".join(f'"{c}"' for c in stored)
        placeholders = ", ".join("?" for _ in stored)
        with self._write_lock, self._connect() as conn:
            conn.execute(
                f'INSERT INTO "{table}" ({columns}) VALUES ({placeholders})',
                list(stored.values()),
            )
        return stored

    def select_rows(
        self,
        table: str,
        filters: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        self._check_columns(table, list(filters) + ([order_by] if order_by else []))
        where, params = self._where(filters)
        order = ""
        if order_by:
            order = f' ORDER BY "{order_by}" {"DESC" if descending else "ASC"}'
        with self._connect() as conn:
            rows = conn.execute(f'SELECT * FROM "{table}"{where}{order}', params).fetchall()
        return [dict(r) for r in rows]

    def update_rows(
        self, table: str, filters: dict[str, Any], values: dict[str, Any]
    ) -> list[dict[str, Any]]:
        self._check_columns(table, list(filters) + list(values))
        assignments = ", ".join(f'"{c}" = ?' for c in values)
        where, params = self._where(filters)
        with self._write_lock, self._connect() as conn:
            conn.execute(
                f'UPDATE "{table}" SET {assignments}{where}',
                list(values.values()) + params,
            )
        return self.select_rows(table, {**filters, **values})

    def delete_rows(self, table: str, filters: dict[str, Any]) -> int:
        self._check_columns(table, filters)
        where, params = self._where(filters)
        with self._write_lock, self._connect() as conn:
            cursor = conn.execute(f'DELETE FROM "{table}"{where}', params)
            return cursor.rowcount


backend_registry.register(LocalBackend)
