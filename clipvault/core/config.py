from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="CLIPVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for bearer token validation.")
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for clipvault."""

    model_config = SettingsConfigDict(
        env_prefix="CLIPVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "clipvault"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./clipvault.db",
        description="SQLAlchemy compatible DSN.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for the rq derivative backend.",
    )

    blob_backend: Literal["local", "s3"] = Field(default="local", description="Active blob store implementation.")
    local_blob_path: Path = Field(default_factory=lambda: Path("blobs"), description="Root for the local blob store.")
    s3_bucket: str = Field(default="clipvault-files")
    s3_region: str = Field(default="us-east-1")
    s3_endpoint_url: HttpUrl | None = None
    scratch_dir: Path = Field(default_factory=lambda: Path("temp"), description="Local scratch space for downloads.")
    signed_url_ttl_seconds: int = Field(default=3600, ge=1)
    max_upload_size_bytes: int = Field(default=500 * 1024 * 1024, description="Soft limit for direct uploads.")

    fetch_default_host_limit: int = Field(default=4, ge=1, description="Concurrent requests allowed per hostname.")
    fetch_host_limits: dict[str, int] = Field(
        default_factory=lambda: {"redgifs.com": 1},
        description="Per-host concurrency overrides, matched on the hostname suffix.",
    )
    fetch_timeout_s: float = Field(default=20.0, gt=0)
    fetch_max_retries: int = Field(default=3, ge=0)
    fetch_backoff_base_s: float = Field(default=1.0, ge=0)
    fetch_max_jitter_s: float = Field(default=0.5, ge=0)

    resolve_deadline_s: float = Field(default=8.0, gt=0, description="Overall deadline for racing resolvers.")
    resolve_strategy_timeout_s: float = Field(default=2.5, gt=0, description="Timeout applied to each strategy.")
    resolve_authoritative_grace_s: float = Field(default=0.75, ge=0, lt=1.0)
    resolve_overall_timeout_s: float = Field(default=10.0, gt=0, description="Hard cap on one full resolution.")
    resolve_max_depth: int = Field(default=3, ge=0, description="Nested resolution hops allowed.")

    similarity_strict_threshold: float = Field(default=12.0, ge=0)
    similarity_loose_threshold: float = Field(default=24.0, ge=0)
    similarity_short_sequence_frames: int = Field(default=20, ge=1)
    similarity_duration_margin_ms: int = Field(default=500, ge=0)

    fingerprint_service_url: HttpUrl | None = Field(
        default=None,
        description="Optional remote fingerprinting service; local ffmpeg/fpcalc is used otherwise.",
    )

    derivative_backend: Literal["background", "inline", "rq"] = Field(
        default="background",
        description="How derivative pipelines run after an asset is saved.",
    )
    ingest_job_ttl_seconds: int = Field(default=3600, description="How long terminal ingest jobs stay pollable.")

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def normalized_derivative_backend(self) -> str:
        if self.derivative_backend == "inline":
            return "background"
        return self.derivative_backend


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "CLIPVAULT_ENV": "CLIPVAULT_ENVIRONMENT",
        "CLIPVAULT_DB_URL": "CLIPVAULT_DATABASE_URL",
        "CLIPVAULT_DERIVATIVES": "CLIPVAULT_DERIVATIVE_BACKEND",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()

    secrets = Secrets.from_settings(settings)

    if settings.environment_lower == "production" and secrets.jwt_secret == "change-me":
        raise ValueError("Production environment must have a non-default JWT secret.")

    settings.secrets = secrets
    return settings


__all__ = ["Settings", "Secrets", "get_settings"]
