"""Runtime configuration for the task orchestrator, fetcher, and validator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_USER_AGENT = "SEC13F Collector admin@sec13f-collector.example"


@dataclass(slots=True)
class OrchestratorSettings:
    """Scheduling loop, worker pool, and retry policy settings."""

    poll_interval_seconds: float = 60.0
    worker_pool_size: int = 3
    max_retries: int = 3
    retry_base_seconds: float = 3_600.0
    retry_multiplier: float = 1.0
    retry_max_seconds: float = 86_400.0
    enqueue_merge_after_scrape: bool = True


@dataclass(slots=True)
class FetcherSettings:
    """Outbound request settings for SEC EDGAR."""

    user_agent: str = DEFAULT_USER_AGENT
    min_request_interval_ms: int = 100
    request_timeout_seconds: float = 30.0
    data_base_url: str = "https://data.sec.gov"
    archives_base_url: str = "https://www.sec.gov/Archives"


@dataclass(slots=True)
class ValidationSettings:
    """Plausibility thresholds applied to parsed holdings."""

    max_holding_value: float = 1e12
    max_holding_shares: float = 1e10


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".sec13f.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    fetcher: FetcherSettings = field(default_factory=FetcherSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("SEC13F_DB_PATH", ".sec13f.db")),
            sqlite_busy_timeout_ms=int(os.getenv("SEC13F_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("SEC13F_LOG_LEVEL", "INFO").upper(),
            orchestrator=OrchestratorSettings(
                poll_interval_seconds=float(
                    os.getenv("SEC13F_POLL_INTERVAL_SECONDS", "60"),
                ),
                worker_pool_size=int(os.getenv("SEC13F_WORKER_POOL_SIZE", "3")),
                max_retries=int(os.getenv("SEC13F_MAX_RETRIES", "3")),
                retry_base_seconds=float(os.getenv("SEC13F_RETRY_BASE_SECONDS", "3600")),
                retry_multiplier=float(os.getenv("SEC13F_RETRY_MULTIPLIER", "1.0")),
                retry_max_seconds=float(os.getenv("SEC13F_RETRY_MAX_SECONDS", "86400")),
                enqueue_merge_after_scrape=_env_bool(
                    "SEC13F_ENQUEUE_MERGE_AFTER_SCRAPE",
                    default=True,
                ),
            ),
            fetcher=FetcherSettings(
                user_agent=os.getenv("SEC13F_USER_AGENT", DEFAULT_USER_AGENT),
                min_request_interval_ms=int(
                    os.getenv("SEC13F_MIN_REQUEST_INTERVAL_MS", "100"),
                ),
                request_timeout_seconds=float(
                    os.getenv("SEC13F_REQUEST_TIMEOUT_SECONDS", "30"),
                ),
                data_base_url=os.getenv("SEC13F_DATA_BASE_URL", "https://data.sec.gov"),
                archives_base_url=os.getenv(
                    "SEC13F_ARCHIVES_BASE_URL",
                    "https://www.sec.gov/Archives",
                ),
            ),
            validation=ValidationSettings(
                max_holding_value=float(os.getenv("SEC13F_MAX_HOLDING_VALUE", "1e12")),
                max_holding_shares=float(os.getenv("SEC13F_MAX_HOLDING_SHARES", "1e10")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error when a setting is out of range."""

        orchestrator = self.orchestrator
        if orchestrator.poll_interval_seconds <= 0:
            raise ValueError("SEC13F_POLL_INTERVAL_SECONDS must be > 0.")
        if orchestrator.worker_pool_size < 1:
            raise ValueError("SEC13F_WORKER_POOL_SIZE must be >= 1.")
        if orchestrator.max_retries < 0:
            raise ValueError("SEC13F_MAX_RETRIES must be >= 0.")
        if orchestrator.retry_base_seconds < 0:
            raise ValueError("SEC13F_RETRY_BASE_SECONDS must be >= 0.")
        if orchestrator.retry_multiplier < 1:
            raise ValueError("SEC13F_RETRY_MULTIPLIER must be >= 1 to keep backoff monotonic.")
        if orchestrator.retry_max_seconds < orchestrator.retry_base_seconds:
            raise ValueError("SEC13F_RETRY_MAX_SECONDS must be >= SEC13F_RETRY_BASE_SECONDS.")
        if self.fetcher.min_request_interval_ms < 0:
            raise ValueError("SEC13F_MIN_REQUEST_INTERVAL_MS must be >= 0.")
        if self.fetcher.request_timeout_seconds <= 0:
            raise ValueError("SEC13F_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if not self.fetcher.user_agent.strip():
            raise ValueError("SEC13F_USER_AGENT must identify the caller.")
        for name, url in (
            ("SEC13F_DATA_BASE_URL", self.fetcher.data_base_url),
            ("SEC13F_ARCHIVES_BASE_URL", self.fetcher.archives_base_url),
        ):
            _validate_base_url(name, url)


def _validate_base_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"Invalid {name}: {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
