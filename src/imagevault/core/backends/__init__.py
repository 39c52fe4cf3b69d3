"""Storage/auth/table backends.

Importing this package registers every bundled implementation with
:data:`backend_registry`.
"""

from imagevault.core.backends.base import BackendRegistry, StorageBackend, backend_registry
from imagevault.core.backends.local import LocalBackend
from imagevault.core.backends.supabase_backend import SupabaseBackend
from imagevault.core.config import ImageVaultConfig


def build_backend(config: ImageVaultConfig) -> StorageBackend:
    """Instantiate the backend selected by ``config.backend``.

    Raises:
        MissingConfig: If the backend's required settings are absent.
    """
    config.require_backend_settings()
    return backend_registry.instantiate(config.backend, config)


__all__ = [
    "BackendRegistry",
    "LocalBackend",
    "StorageBackend",
    "SupabaseBackend",
    "backend_registry",
    "build_backend",
]
