"""Configuration management for ImageVault.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMAGEVAULT_ prefix,
allowing the service to be pointed at a different backend or webhook without code
changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMAGEVAULT_* prefix)
2. .env file in the project root
3. Default values defined in ImageVaultConfig

Example .env file:
    IMAGEVAULT_BACKEND=supabase
    IMAGEVAULT_SUPABASE_URL=https://project.supabase.co
    IMAGEVAULT_SUPABASE_SERVICE_KEY=service-role-key
    IMAGEVAULT_WEBHOOK_URL=https://automation.example.com/webhook/create_image

Local backend example (no hosted services required):
    IMAGEVAULT_BACKEND=local
    IMAGEVAULT_LOCAL_SIGNING_KEY=change-me
    IMAGEVAULT_LOCAL_TOKENS={"dev-token": "u1"}

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
Unlike the backend credentials, nothing here is required at import time: a
missing credential only fails once a backend is actually built (see
``require_backend_settings``).

Timeouts
--------
- webhook_timeout bounds the whole round trip to the image webhook (60 s).
- source_fetch_timeout bounds the secure-copy fetch.  ``None`` leaves it
  unbounded, so a hung source can stall a request indefinitely.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from imagevault.core.errors import MissingConfig


class ImageVaultConfig(BaseSettings):
    """Main configuration for ImageVault.

    Attributes
    ----------
    Backend Settings:
        backend : Literal["supabase", "local"]
            Storage/auth/table backend implementation.
        supabase_url : str | None
            Base URL of the hosted backend.
        supabase_service_key : str | None
            Privileged service credential for storage and auth lookups.
        storage_bucket : str
            Private bucket that receives secured images.
        history_table : str
            Table holding one row per successful generation.
        profiles_table : str
            Table holding user profiles.

    Pipeline Settings:
        webhook_url : str
            Fixed external image-generation endpoint.
        webhook_timeout : float
            Upper bound on the webhook round trip, in seconds.
        waiting_threshold : float
            Delay before the "waiting for webhook" status is shown.
        signed_url_ttl : int
            Lifetime of signed URLs, in seconds.
        source_fetch_timeout : float | None
            Timeout for fetching the source image (None = unbounded).
        upload_cache_control : str
            Cache-Control value stored with uploaded objects.

    Local Backend:
        local_storage_dir : Path
            Root directory for objects and the SQLite database.
        local_signing_key : str | None
            HMAC key used to sign local URLs.
        local_tokens : dict[str, str]
            Bearer token to user id map.
        public_base_url : str
            Base URL used when building local signed URLs.

    Server Settings:
        server_host, server_port, cors_allow_origins

    Examples
    --------
        >>> cfg = ImageVaultConfig(backend="local", local_signing_key="k")
        >>> cfg.signed_url_ttl
        3600
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGEVAULT_",
        case_sensitive=False,
    )

    # Backend selection and credentials
    backend: Literal["supabase", "local"] = Field(
        default="supabase",
        description="Storage/auth backend implementation (supabase or local)",
    )
    supabase_url: str | None = Field(
        default=None,
        description="Base URL of the Supabase project",
    )
    supabase_service_key: str | None = Field(
        default=None,
        description="Service-role key used by the secure copy function",
    )
    storage_bucket: str = Field(
        default="generated_images",
        description="Private bucket for secured images",
    )
    history_table: str = Field(
        default="generated_images",
        description="Per-user generation history table",
    )
    profiles_table: str = Field(
        default="user_profiles",
        description="User profile table",
    )

    # Pipeline settings
    webhook_url: str = Field(
        default="https://n8n.srv834342.hstgr.cloud/webhook-test/create_image",
        description="External image generation webhook",
    )
    webhook_timeout: float = Field(default=60.0, gt=0)
    waiting_threshold: float = Field(default=3.0, ge=0)
    signed_url_ttl: int = Field(default=3600, ge=1, le=604800)
    source_fetch_timeout: float | None = Field(
        default=None,
        description="Source image fetch timeout in seconds (None = unbounded)",
    )
    upload_cache_control: str = Field(default="3600")

    # Local backend
    local_storage_dir: Path = Field(
        default=Path("storage"),
        description="Root directory of the local backend",
    )
    local_signing_key: str | None = Field(
        default=None,
        description="HMAC key for local signed URLs",
    )
    local_tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Bearer token -> user id map for the local backend",
    )
    public_base_url: str = Field(
        default="http://localhost:7860",
        description="Public base URL used in local signed URLs",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address",
    )
    server_port: int = Field(
        default=7860,
        description="Server port",
        ge=1024,
        le=65535,
    )
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])

    def require_backend_settings(self) -> None:
        """Fail fast when the selected backend is missing required settings.

        Raises:
            MissingConfig: If a required credential is absent.
        """
        if self.backend == "supabase":
            missing = [
                name
                for name in ("supabase_url", "supabase_service_key")
                if not getattr(self, name)
            ]
        else:
            missing = [] if self.local_signing_key else ["local_signing_key"]

        if missing:
            env_names = ", ".join(f"IMAGEVAULT_{name.upper()}" for name in missing)
            raise MissingConfig(f"Missing required configuration: {env_names}")


# Global configuration instance
config = ImageVaultConfig()
