"""Time-limited read URLs for private objects.

A signed URL is a capability: whoever holds it can read exactly one object
until it expires, without credentials.  Nothing is persisted; a new URL can be
minted from the object path at any time, and every call yields an independent,
equally valid URL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from imagevault.core.backends.base import StorageBackend
from imagevault.core.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SIGNED_URL_TTL = 3600


@dataclass(frozen=True)
class SignedAccessUrl:
    url: str
    path: str
    expires_at: datetime


class SignedUrlIssuer:
    """Mints signed read URLs for objects in one bucket.

    Expiry is computed from ``backend.clock``, the same clock the backend
    signs with, so the reported ``expires_at`` is the one the URL enforces.
    """

    def __init__(self, backend: StorageBackend, bucket: str) -> None:
        self.backend = backend
        self.bucket = bucket

    def issue(self, path: str, expires_in: int = DEFAULT_SIGNED_URL_TTL) -> SignedAccessUrl:
        """Mint a URL for ``path`` valid for ``expires_in`` seconds.

        Raises:
            ValidationError: If ``expires_in`` is not positive.
            PathNotFound: If no object exists at ``path``.
            SigningFailed: If the store rejects the request.
        """
        if expires_in <= 0:
            raise ValidationError("expires_in must be a positive number of seconds")

        issued_at = int(self.backend.clock())
        url = self.backend.create_signed_url(self.bucket, path, expires_in)
        expires_at = datetime.fromtimestamp(issued_at + int(expires_in), tz=timezone.utc)
        logger.debug("Signed %s until %s", path, expires_at.isoformat())
        return SignedAccessUrl(url=url, path=path, expires_at=expires_at)
