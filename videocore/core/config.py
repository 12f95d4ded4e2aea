from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised runtime configuration for the ingestion core."""

    model_config = SettingsConfigDict(
        env_prefix="VIDEOCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "videocore"
    environment: str = Field(default="development", description="Deployment environment label.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./videocore.db",
        description="SQLAlchemy compatible DSN.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for background jobs, view dedup and notifications.",
    )

    storage_root: Path = Field(default_factory=lambda: Path("storage"), description="Root for media and artefacts.")
    webserver_url: str = Field(default="http://localhost:9000", description="Public URL used to build video URLs.")

    transcoding_enabled: bool = Field(default=True, description="New uploads wait for a transcoding job.")
    auto_blacklist_enabled: bool = Field(default=False, description="Flag new local videos for moderation review.")
    mark_channel_updated_on_import: bool = Field(
        default=False,
        description="Also mark the owning channel as updated when an import is created.",
    )

    job_queue_backend: Literal["immediate", "inline", "rq"] = Field(
        default="immediate",
        description="Backend for async jobs (inline executes inline; rq schedules via Redis).",
    )
    job_max_retries: int = Field(default=3, description="Maximum retry attempts for failed jobs.")
    job_retry_backoff_base: float = Field(default=2.0, description="Backoff multiplier between retries.")
    job_retry_initial_delay_s: float = Field(default=1.0, description="Initial delay before the first retry.")
    job_consumers: dict[str, str] = Field(
        default_factory=dict,
        description="Job type to the dotted path of the callable that consumes it.",
    )

    transaction_max_attempts: int = Field(default=5, description="Attempts for a conflicting transaction.")
    transaction_retry_delay_s: float = Field(default=0.1, description="Base delay between transaction attempts.")

    view_store_backend: Literal["memory", "redis"] = Field(default="memory")
    view_expiry_seconds: int = Field(default=3600, description="Dedup window for VOD views.")
    live_view_expiry_seconds: int = Field(default=10, description="Dedup window for live views.")

    notifier_backend: Literal["log", "redis"] = Field(default="log")
    notifier_channel: str = Field(default="videocore:notifications")

    thumbnail_fetch_timeout_s: float = Field(default=20.0)
    torrent_trackers: tuple[str, ...] = Field(default=())
    extractor_user_agent: str | None = None

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend

    def local_video_url(self, video_uuid: str) -> str:
        return f"{self.webserver_url.rstrip('/')}/videos/watch/{video_uuid}"


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "VIDEOCORE_ENV": "VIDEOCORE_ENVIRONMENT",
        "VIDEOCORE_DB_URL": "VIDEOCORE_DATABASE_URL",
        "VIDEOCORE_JOB_BACKEND": "VIDEOCORE_JOB_QUEUE_BACKEND",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    return Settings()


__all__ = ["Settings", "get_settings"]
