"""Tests for imagevault.core.signed_urls — time-limited read URLs.

Resolution is exercised through the local backend, whose clock can be moved
forward to simulate expiry.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from imagevault.core.errors import PathNotFound, SignedUrlRejected, SigningFailed, ValidationError
from imagevault.core.signed_urls import SignedUrlIssuer

BUCKET = "generated_images"
START = 1_700_000_000.0


@pytest.fixture
def frozen_backend(local_backend):
    local_backend.clock = lambda: START
    return local_backend


@pytest.fixture
def issuer(frozen_backend) -> SignedUrlIssuer:
    return SignedUrlIssuer(frozen_backend, BUCKET)


def _resolve(backend, url: str) -> tuple[bytes, str]:
    """Resolve a local signed URL back to bytes via the backend."""
    parts = urlsplit(url)
    prefix = f"/storage/v1/object/sign/{BUCKET}/"
    assert parts.path.startswith(prefix)
    path = unquote(parts.path[len(prefix):])
    token = parse_qs(parts.query)["token"][0]
    return backend.resolve_signed_url(BUCKET, path, token)


class TestSignedUrlIssuer:
    """Tests for SignedUrlIssuer.issue."""

    def test_issue_returns_expiry(self, issuer, frozen_backend):
        frozen_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        signed = issuer.issue("u1/a.png", 3600)

        assert signed.path == "u1/a.png"
        assert signed.expires_at == datetime.fromtimestamp(START + 3600, tz=timezone.utc)

    def test_resolves_to_uploaded_bytes(self, issuer, frozen_backend):
        frozen_backend.upload(BUCKET, "u1/a.png", b"uploaded-bytes", "image/png")
        signed = issuer.issue("u1/a.png")

        data, content_type = _resolve(frozen_backend, signed.url)
        assert data == b"uploaded-bytes"
        assert content_type == "image/png"

    def test_fails_after_expiry(self, issuer, frozen_backend):
        """Time travel past the one-hour window invalidates the URL."""
        frozen_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        signed = issuer.issue("u1/a.png", 3600)

        frozen_backend.clock = lambda: START + 3599
        assert _resolve(frozen_backend, signed.url)[0] == b"img"

        frozen_backend.clock = lambda: START + 3601
        with pytest.raises(SignedUrlRejected, match="expired"):
            _resolve(frozen_backend, signed.url)

    def test_two_issues_are_independent(self, issuer, frozen_backend):
        frozen_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        first = issuer.issue("u1/a.png")
        second = issuer.issue("u1/a.png")

        assert first.url != second.url
        assert _resolve(frozen_backend, first.url)[0] == b"img"
        assert _resolve(frozen_backend, second.url)[0] == b"img"

    def test_missing_path(self, issuer):
        with pytest.raises(PathNotFound):
            issuer.issue("u1/missing.png")

    def test_rejects_non_positive_ttl(self, issuer):
        with pytest.raises(ValidationError):
            issuer.issue("u1/a.png", 0)

    def test_signing_failure_propagates(self):
        backend = MagicMock()
        backend.create_signed_url.side_effect = SigningFailed("rejected")
        with pytest.raises(SigningFailed):
            SignedUrlIssuer(backend, BUCKET).issue("u1/a.png")

    def test_tampered_path_is_rejected(self, issuer, frozen_backend):
        frozen_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        frozen_backend.upload(BUCKET, "u2/b.png", b"other", "image/png")
        signed = issuer.issue("u1/a.png")

        token = parse_qs(urlsplit(signed.url).query)["token"][0]
        with pytest.raises(SignedUrlRejected):
            frozen_backend.resolve_signed_url(BUCKET, "u2/b.png", token)

    def test_garbage_token_is_rejected(self, frozen_backend):
        frozen_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        with pytest.raises(SignedUrlRejected):
            frozen_backend.resolve_signed_url(BUCKET, "u1/a.png", "not-a-token")

    def test_expiry_follows_backend_clock(self, issuer, frozen_backend):
        """The reported expiry is the one embedded in the signed token."""
        frozen_backend.upload(BUCKET, "u1/a.png", b"img", "image/png")
        frozen_backend.clock = lambda: START + 500.7
        signed = issuer.issue("u1/a.png", 3600)

        token = parse_qs(urlsplit(signed.url).query)["token"][0]
        token_expiry = int(token.split(".")[0])
        assert signed.expires_at.timestamp() == token_expiry == START + 500 + 3600
