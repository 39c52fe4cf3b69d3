"""Secure copy of a public image into private, per-user storage.

The webhook hands back a public URL of unknown longevity and trust.  The
secure copy fetches those bytes server-side and re-uploads them into the
private bucket at ``{user_id}/{uuid4}.png``:

- the file name never comes from the caller, so there is no path traversal
  and no way to target another user's namespace
- uploads are write-once (``upsert`` disabled); a path collision fails the
  whole operation instead of overwriting

Exactly one object is written per successful call.  Nothing is retried, and
no signed URL is minted here (see :mod:`imagevault.core.signed_urls`).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

import httpx

from imagevault.core.auth import AuthContext
from imagevault.core.backends.base import StorageBackend
from imagevault.core.errors import (
    EmptySource,
    InvalidUrl,
    SourceFetchFailed,
    Unauthorized,
)

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/png"


@dataclass(frozen=True)
class StoredImage:
    """An uploaded object in the private bucket."""

    path: str
    size: int
    content_type: str


def validate_source_url(image_url: str | None) -> httpx.URL:
    """Check that ``image_url`` is an absolute http(s) URL with a host.

    Raises:
        InvalidUrl: If the URL is missing or not well-formed.
    """
    if not image_url or not isinstance(image_url, str):
        raise InvalidUrl("Missing imageUrl in request body")
    try:
        url = httpx.URL(image_url.strip())
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise InvalidUrl(f"Invalid image URL: {image_url}") from e

    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidUrl(f"Invalid image URL: {image_url}")
    return url


def build_storage_path(user_id: str) -> str:
    """Compose a fresh ``{user_id}/{uuid}.png`` object path."""
    return f"{user_id}/{uuid.uuid4()}.png"


class SecureCopier:
    """Fetches a source image and uploads it into the caller's namespace.

    Args:
        backend: Storage backend receiving the upload.
        bucket: Private bucket name.
        fetch_timeout: Timeout for the source fetch (None = unbounded).
        cache_control: Cache-Control stored with the object.
        transport: Optional httpx transport used for the fetch.
    """

    def __init__(
        self,
        backend: StorageBackend,
        bucket: str,
        *,
        fetch_timeout: float | None = None,
        cache_control: str = "3600",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.backend = backend
        self.bucket = bucket
        self.fetch_timeout = fetch_timeout
        self.cache_control = cache_control
        self._transport = transport

    def _fetch(self, url: httpx.URL) -> tuple[bytes, str]:
        try:
            with httpx.Client(
                timeout=self.fetch_timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            raise SourceFetchFailed(f"Failed to fetch image from source: {e}") from e

        if not response.is_success:
            raise SourceFetchFailed(
                f"Failed to fetch image from source. Status: {response.status_code}"
            )

        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        return response.content, content_type

    def copy(self, caller: AuthContext | None, image_url: str | None) -> StoredImage:
        """Copy ``image_url`` into the caller's private namespace.

        Args:
            caller: Authenticated caller; required.
            image_url: Public URL of the source image.

        Returns:
            The stored object.

        Raises:
            Unauthorized: If no caller is given.
            InvalidUrl: If the URL is not well-formed.
            SourceFetchFailed: On a transport error or non-2xx response.
            EmptySource: If the source returned no bytes.
            UploadFailed: If the store rejects the upload.
        """
        if caller is None:
            raise Unauthorized()

        url = validate_source_url(image_url)
        data, content_type = self._fetch(url)
        if not data:
            raise EmptySource("Source image is empty")

        path = build_storage_path(caller.user_id)
        self.backend.upload(
            self.bucket,
            path,
            data,
            content_type,
            cache_control=self.cache_control,
            upsert=False,
        )
        logger.info("Secured %d bytes (%s) for user %s", len(data), content_type, caller.user_id)
        return StoredImage(path=path, size=len(data), content_type=content_type)
