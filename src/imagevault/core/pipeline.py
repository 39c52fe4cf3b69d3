"""Wiring of the generation pipeline from configuration.

:class:`Pipeline` holds the shared, stateless components (backend, webhook
client, secure copier, signed URL issuer, history recorder).  Orchestrators
carry per-user state, so a fresh one is created per user session via
:meth:`Pipeline.orchestrator`.

Usage
-----
::

    from imagevault.core.config import config
    from imagevault.core.pipeline import Pipeline

    pipeline = Pipeline.from_config(config)
    status = pipeline.orchestrator().submit("a red cube", auth)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from imagevault.core.backends import StorageBackend, build_backend
from imagevault.core.config import ImageVaultConfig
from imagevault.core.history import HistoryRecorder
from imagevault.core.orchestrator import GenerationOrchestrator, StatusListener
from imagevault.core.secure_copy import SecureCopier
from imagevault.core.signed_urls import SignedUrlIssuer
from imagevault.core.webhook import WebhookClient

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    config: ImageVaultConfig
    backend: StorageBackend
    webhook: WebhookClient
    copier: SecureCopier
    issuer: SignedUrlIssuer
    recorder: HistoryRecorder

    @classmethod
    def from_config(
        cls,
        config: ImageVaultConfig,
        backend: StorageBackend | None = None,
        *,
        webhook_transport: httpx.BaseTransport | None = None,
        source_transport: httpx.BaseTransport | None = None,
    ) -> Pipeline:
        """Build every component from ``config``.

        Args:
            config: Application configuration.
            backend: Pre-built backend; built from ``config`` when omitted.
            webhook_transport: Optional httpx transport for the webhook.
            source_transport: Optional httpx transport for source fetches.

        Raises:
            MissingConfig: If the backend's required settings are absent.
        """
        if backend is None:
            backend = build_backend(config)

        pipeline = cls(
            config=config,
            backend=backend,
            webhook=WebhookClient(
                config.webhook_url,
                timeout=config.webhook_timeout,
                transport=webhook_transport,
            ),
            copier=SecureCopier(
                backend,
                config.storage_bucket,
                fetch_timeout=config.source_fetch_timeout,
                cache_control=config.upload_cache_control,
                transport=source_transport,
            ),
            issuer=SignedUrlIssuer(backend, config.storage_bucket),
            recorder=HistoryRecorder(backend, config.history_table, config.storage_bucket),
        )
        logger.info("Pipeline ready (backend=%s, bucket=%s)", backend.name, config.storage_bucket)
        return pipeline

    def orchestrator(self, listener: StatusListener | None = None) -> GenerationOrchestrator:
        """Create an orchestrator for one user session."""
        return GenerationOrchestrator(
            self.webhook,
            self.copier,
            self.issuer,
            self.recorder,
            waiting_threshold=self.config.waiting_threshold,
            signed_url_ttl=self.config.signed_url_ttl,
            listener=listener,
        )
