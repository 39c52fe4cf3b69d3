"""Shared pytest fixtures for ImageVault tests."""

import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Generator

import httpx
import pytest
from fastapi.testclient import TestClient

from imagevault.api.main import create_app
from imagevault.core.auth import AuthContext
from imagevault.core.backends import LocalBackend
from imagevault.core.config import ImageVaultConfig
from imagevault.core.pipeline import Pipeline

WEBHOOK_URL = "https://webhook.test/webhook/create_image"
SOURCE_URL = "https://ext/img.png"

# 10 KB payload with a PNG signature.
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * (10 * 1024 - 8)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> ImageVaultConfig:
    """Create a local-backend configuration rooted in a temporary directory."""
    return ImageVaultConfig(
        _env_file=None,
        backend="local",
        local_storage_dir=temp_dir / "storage",
        local_signing_key="test-signing-key",
        local_tokens={"token-u1": "u1", "token-u2": "u2"},
        webhook_url=WEBHOOK_URL,
        public_base_url="http://testserver",
    )


@pytest.fixture
def local_backend(test_config: ImageVaultConfig) -> LocalBackend:
    return LocalBackend(test_config)


@pytest.fixture
def auth_u1() -> AuthContext:
    return AuthContext(user_id="u1", access_token="token-u1")


@pytest.fixture
def auth_u2() -> AuthContext:
    return AuthContext(user_id="u2", access_token="token-u2")


@pytest.fixture
def webhook_transport() -> Callable[..., httpx.MockTransport]:
    """Factory for a mock webhook.

    Keyword Args:
        payload: JSON body to answer with (default: one image at SOURCE_URL).
        status: HTTP status (default 200).
        content: Raw body, overriding ``payload``.
        exc: Exception class to raise instead of answering.
        calls: Optional list that receives every request.
    """

    def factory(
        payload=None,
        status: int = 200,
        content: bytes | None = None,
        exc: type[Exception] | None = None,
        calls: list | None = None,
    ) -> httpx.MockTransport:
        body = [{"url": SOURCE_URL}] if payload is None else payload

        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            if exc is not None:
                raise exc("simulated failure", request=request)
            if content is not None:
                return httpx.Response(status, content=content)
            return httpx.Response(status, json=body)

        return httpx.MockTransport(handler)

    return factory


@pytest.fixture
def source_transport() -> Callable[..., httpx.MockTransport]:
    """Factory for mock image sources.

    The default source serves PNG_BYTES for any path, ``/missing.png`` with
    404, and ``/empty.png`` with an empty body.
    """

    def factory(
        content: bytes = PNG_BYTES,
        content_type: str = "image/png",
        calls: list | None = None,
    ) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            if request.url.path == "/missing.png":
                return httpx.Response(404, content=b"not found")
            if request.url.path == "/empty.png":
                return httpx.Response(200, content=b"", headers={"content-type": content_type})
            return httpx.Response(200, content=content, headers={"content-type": content_type})

        return httpx.MockTransport(handler)

    return factory


@pytest.fixture
def pipeline(
    test_config: ImageVaultConfig,
    local_backend: LocalBackend,
    webhook_transport,
    source_transport,
) -> Pipeline:
    """Pipeline wired to the local backend and mock webhook/source."""
    return Pipeline.from_config(
        test_config,
        local_backend,
        webhook_transport=webhook_transport(),
        source_transport=source_transport(),
    )


@pytest.fixture
def test_client(pipeline: Pipeline) -> TestClient:
    """FastAPI TestClient over an app using the test pipeline."""
    return TestClient(create_app(pipeline.config, pipeline))


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer token-u1"}
