"""Supabase implementation of the storage backend.

The client is created with the privileged service credential, so storage
writes bypass row-level security.  The per-user namespace is therefore
enforced by the callers, which always build paths as ``{user_id}/...`` and
filter table queries by ``user_id``.
"""

from __future__ import annotations

import logging
from typing import Any

from supabase import Client, create_client

from imagevault.core.auth import AuthContext
from imagevault.core.backends.base import StorageBackend, backend_registry
from imagevault.core.config import ImageVaultConfig
from imagevault.core.errors import PathNotFound, SigningFailed, UploadFailed

logger = logging.getLogger(__name__)


class SupabaseBackend(StorageBackend):
    """Backend backed by a Supabase project (auth, storage, PostgREST)."""

    name = "supabase"

    def __init__(self, config: ImageVaultConfig, client: Client | None = None) -> None:
        super().__init__(config)
        if client is None:
            config.require_backend_settings()
            client = create_client(config.supabase_url, config.supabase_service_key)
        self.client = client
        logger.info("Initialized Supabase backend for %s", config.supabase_url)

    # -- Auth -----------------------------------------------------------------

    def get_user(self, access_token: str) -> AuthContext | None:
        response = self.client.auth.get_user(access_token)
        user = getattr(response, "user", None)
        if user is None:
            return None
        return AuthContext(
            user_id=str(user.id),
            access_token=access_token,
            email=getattr(user, "email", None),
        )

    # -- Object storage -------------------------------------------------------

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
            self.client.storage.from_(bucket).upload(
                path=path,
                file=data,
                file_options={
                    "content-type": content_type,
                    "cache-control": cache_control,
                    "upsert": "true" if upsert else "false",
                },
            )
        except Exception as e:
            raise UploadFailed(f"Upload failed: {e}") from e

    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        try:
            result = self.client.storage.from_(bucket).create_signed_url(path, expires_in)
        except Exception as e:
            if "not found" in str(e).lower():
                raise PathNotFound(f"Object not found: {path}") from e
            raise SigningFailed(f"Failed to sign URL: {e}") from e

        # storage3 has returned both spellings across releases.
        signed_url = result.get("signedURL") or result.get("signedUrl")
        if not signed_url:
            raise SigningFailed("Storage returned no signed URL")
        return signed_url

    def remove(self, bucket: str, paths: list[str]) -> None:
        self.client.storage.from_(bucket).remove(paths)

    # -- Tables ---------------------------------------------------------------

    def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        response = self.client.table(table).insert(row).execute()
        return response.data[0] if response.data else dict(row)

    def select_rows(
        self,
        table: str,
        filters: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        query = self.client.table(table).select("*")
        for column, value in filters.items():
            query = query.eq(column, value)
        if order_by:
            query = query.order(order_by, desc=descending)
        return query.execute().data or []

    def update_rows(
        self, table: str, filters: dict[str, Any], values: dict[str, Any]
    ) -> list[dict[str, Any]]:
        query = self.client.table(table).update(values)
        for column, value in filters.items():
            query = query.eq(column, value)
        return query.execute().data or []

    def delete_rows(self, table: str, filters: dict[str, Any]) -> int:
        query = self.client.table(table).delete()
        for column, value in filters.items():
            query = query.eq(column, value)
        return len(query.execute().data or [])


backend_registry.register(SupabaseBackend)
