"""Base class and registry for storage backends.

A backend bundles the three hosted services the pipeline depends on:

- **auth**: resolve a bearer token to a user
- **object storage**: write-once uploads, removal, signed read URLs
- **tables**: insert/select/update/delete rows filtered by equality

Each implementation registers itself with :data:`backend_registry` under its
``name`` so that :func:`build_backend` can pick one from configuration.

Usage Example
-------------
    >>> from imagevault.core.backends import build_backend
    >>> from imagevault.core.config import config
    >>> backend = build_backend(config)
    >>> backend.upload("generated_images", "u1/abc.png", b"...", "image/png")
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from imagevault.core.config import ImageVaultConfig

if TYPE_CHECKING:
    from imagevault.core.auth import AuthContext

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """Abstract base class for storage/auth/table backends.

    Implementations translate their client library's failures into the
    pipeline's :mod:`~imagevault.core.errors` types where the contract names
    one (``UploadFailed``, ``PathNotFound``, ``SigningFailed``); table
    operations may raise anything and are wrapped by their callers.

    Attributes
    ----------
    name : str
        Registry key, matched against ``ImageVaultConfig.backend``.
    clock : Callable[[], float]
        Current UNIX time as seen by the store.  Signed URL expiry is
        computed from it; tests replace it to simulate the passage of time.
    """

    name: str = "base"

    def __init__(self, config: ImageVaultConfig) -> None:
        self.config = config
        self.clock: Callable[[], float] = time.time

    # -- Auth -----------------------------------------------------------------

    @abstractmethod
    def get_user(self, access_token: str) -> AuthContext | None:
        """Resolve a bearer token, returning None if it names no user."""

    # -- Object storage -------------------------------------------------------

    @abstractmethod
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
        """Store ``data`` at ``bucket/path``.

        With ``upsert`` disabled an existing object at the same path must make
        the upload fail rather than be overwritten.

        Raises:
            UploadFailed: If the store rejects the write.
        """

    @abstractmethod
    def create_signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        """Mint a read URL valid for ``expires_in`` seconds.

        Raises:
            PathNotFound: If no object exists at the path.
            SigningFailed: If the store rejects the request.
        """

    @abstractmethod
    def remove(self, bucket: str, paths: list[str]) -> None:
        """Delete objects; missing paths are ignored."""

    # -- Tables ---------------------------------------------------------------

    @abstractmethod
    def insert_row(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return it as stored (including generated columns)."""

    @abstractmethod
    def select_rows(
        self,
        table: str,
        filters: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Return rows whose columns equal every value in ``filters``."""

    @abstractmethod
    def update_rows(
        self, table: str, filters: dict[str, Any], values: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Update matching rows and return them."""

    @abstractmethod
    def delete_rows(self, table: str, filters: dict[str, Any]) -> int:
        """Delete matching rows and return how many were removed."""

    def close(self) -> None:
        """Release client resources.  Default is a no-op."""


class BackendRegistry:
    """Registry of available backend implementations."""

    def __init__(self) -> None:
        self._backends: dict[str, type[StorageBackend]] = {}

    def register(self, backend_class: type[StorageBackend]) -> None:
        """Register a backend class under its ``name``.

        Raises:
            ValueError: If another class already uses the name.
        """
        name = backend_class.name
        if name in self._backends and self._backends[name] is not backend_class:
            raise ValueError(f"Backend '{name}' is already registered")
        self._backends[name] = backend_class
        logger.debug("Registered backend: %s", name)

    def instantiate(self, name: str, config: ImageVaultConfig) -> StorageBackend:
        """Create a backend by name.

        Raises:
            ValueError: If no backend is registered under the name.
        """
        if name not in self._backends:
            available = ", ".join(self.list_available())
            raise ValueError(f"Unknown backend '{name}'. Available: {available}")
        return self._backends[name](config)

    def list_available(self) -> list[str]:
        return sorted(self._backends)


# Global backend registry instance
backend_registry = BackendRegistry()
