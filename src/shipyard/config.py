"""Runtime configuration for the task queue and deployment orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from shipyard.deployment.models import DeploymentPlatform

DEFAULT_DB_PATH = ".shipyard.db"
DEFAULT_BASE_DOMAIN = "shipyard.link"
DEFAULT_POSTHOG_HOST = "https://app.posthog.com"


@dataclass(slots=True)
class QueueSettings:
    """Task queue and worker settings."""

    default_priority: int = 5
    default_max_attempts: int = 3
    honor_scheduled_at: bool = True
    poll_interval_seconds: float = 2.0
    retry_base_seconds: float = 5.0
    retry_max_seconds: float = 300.0
    worker_id: str = "worker-1"


@dataclass(slots=True)
class DeploymentSettings:
    """Hosting provider credentials and HTTP policy."""

    base_domain: str = DEFAULT_BASE_DOMAIN
    netlify_access_token: str | None = None
    netlify_team_id: str | None = None
    vercel_access_token: str | None = None
    vercel_team_id: str | None = None
    request_timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    http_retries: int = 1
    status_poll_initial_seconds: float = 2.0
    status_poll_max_seconds: float = 30.0
    status_wait_timeout_seconds: float = 600.0
    default_list_limit: int = 20

    def credentialed_platforms(self) -> tuple[DeploymentPlatform, ...]:
        """Platforms whose access token is present, in declaration order."""

        platforms: list[DeploymentPlatform] = []
        if self.netlify_access_token:
            platforms.append(DeploymentPlatform.NETLIFY)
        if self.vercel_access_token:
            platforms.append(DeploymentPlatform.VERCEL)
        return tuple(platforms)


@dataclass(slots=True)
class AnalyticsSettings:
    """Lifecycle event sink settings."""

    posthog_api_key: str | None = None
    posthog_host: str = DEFAULT_POSTHOG_HOST
    enabled: bool = True
    timeout_seconds: float = 5.0

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.posthog_api_key)


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    queue: QueueSettings = field(default_factory=QueueSettings)
    deployment: DeploymentSettings = field(default_factory=DeploymentSettings)
    analytics: AnalyticsSettings = field(default_factory=AnalyticsSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("SHIPYARD_DB_PATH", DEFAULT_DB_PATH)),
            busy_timeout_ms=int(os.getenv("SHIPYARD_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("SHIPYARD_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            queue=QueueSettings(
                default_priority=int(os.getenv("SHIPYARD_QUEUE_DEFAULT_PRIORITY", "5")),
                default_max_attempts=int(os.getenv("SHIPYARD_QUEUE_DEFAULT_MAX_ATTEMPTS", "3")),
                honor_scheduled_at=_env_bool("SHIPYARD_QUEUE_HONOR_SCHEDULED_AT", default=True),
                poll_interval_seconds=float(
                    os.getenv("SHIPYARD_QUEUE_POLL_INTERVAL_SECONDS", "2.0"),
                ),
                retry_base_seconds=float(os.getenv("SHIPYARD_QUEUE_RETRY_BASE_SECONDS", "5.0")),
                retry_max_seconds=float(os.getenv("SHIPYARD_QUEUE_RETRY_MAX_SECONDS", "300.0")),
                worker_id=os.getenv("SHIPYARD_WORKER_ID", "worker-1"),
            ),
            deployment=DeploymentSettings(
                base_domain=os.getenv("SHIPYARD_BASE_DOMAIN", DEFAULT_BASE_DOMAIN).strip(),
                netlify_access_token=_env_optional("SHIPYARD_NETLIFY_ACCESS_TOKEN"),
                netlify_team_id=_env_optional("SHIPYARD_NETLIFY_TEAM_ID"),
                vercel_access_token=_env_optional("SHIPYARD_VERCEL_ACCESS_TOKEN"),
                vercel_team_id=_env_optional("SHIPYARD_VERCEL_TEAM_ID"),
                request_timeout_seconds=float(
                    os.getenv("SHIPYARD_DEPLOY_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                connect_timeout_seconds=float(
                    os.getenv("SHIPYARD_DEPLOY_CONNECT_TIMEOUT_SECONDS", "10.0"),
                ),
                http_retries=int(os.getenv("SHIPYARD_DEPLOY_HTTP_RETRIES", "1")),
                status_poll_initial_seconds=float(
                    os.getenv("SHIPYARD_DEPLOY_STATUS_POLL_INITIAL_SECONDS", "2.0"),
                ),
                status_poll_max_seconds=float(
                    os.getenv("SHIPYARD_DEPLOY_STATUS_POLL_MAX_SECONDS", "30.0"),
                ),
                status_wait_timeout_seconds=float(
                    os.getenv("SHIPYARD_DEPLOY_STATUS_WAIT_TIMEOUT_SECONDS", "600.0"),
                ),
                default_list_limit=int(os.getenv("SHIPYARD_DEPLOY_DEFAULT_LIST_LIMIT", "20")),
            ),
            analytics=AnalyticsSettings(
                posthog_api_key=_env_optional("SHIPYARD_POSTHOG_API_KEY"),
                posthog_host=os.getenv("SHIPYARD_POSTHOG_HOST", DEFAULT_POSTHOG_HOST).strip(),
                enabled=_env_bool("SHIPYARD_ANALYTICS_ENABLED", default=True),
                timeout_seconds=float(os.getenv("SHIPYARD_ANALYTICS_TIMEOUT_SECONDS", "5.0")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on out-of-range values."""

        if self.busy_timeout_ms <= 0:
            raise ValueError("SHIPYARD_BUSY_TIMEOUT_MS must be > 0.")
        if self.queue.default_max_attempts < 1:
            raise ValueError("SHIPYARD_QUEUE_DEFAULT_MAX_ATTEMPTS must be >= 1.")
        if self.queue.poll_interval_seconds <= 0:
            raise ValueError("SHIPYARD_QUEUE_POLL_INTERVAL_SECONDS must be > 0.")
        if self.queue.retry_base_seconds < 0 or self.queue.retry_max_seconds < 0:
            raise ValueError("Queue retry delays must be >= 0.")
        if not self.deployment.base_domain or "." not in self.deployment.base_domain:
            raise ValueError(
                "SHIPYARD_BASE_DOMAIN must be a dotted domain, "
                f"got {self.deployment.base_domain!r}.",
            )
        if self.deployment.request_timeout_seconds <= 0:
            raise ValueError("SHIPYARD_DEPLOY_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.deployment.connect_timeout_seconds <= 0:
            raise ValueError("SHIPYARD_DEPLOY_CONNECT_TIMEOUT_SECONDS must be > 0.")
        if self.deployment.http_retries < 0:
            raise ValueError("SHIPYARD_DEPLOY_HTTP_RETRIES must be >= 0.")
        if self.deployment.status_poll_initial_seconds <= 0:
            raise ValueError("SHIPYARD_DEPLOY_STATUS_POLL_INITIAL_SECONDS must be > 0.")
        if self.deployment.status_poll_max_seconds < self.deployment.status_poll_initial_seconds:
            raise ValueError(
                "SHIPYARD_DEPLOY_STATUS_POLL_MAX_SECONDS must be >= the initial poll interval.",
            )
        if not 1 <= self.deployment.default_list_limit <= 100:
            raise ValueError("SHIPYARD_DEPLOY_DEFAULT_LIST_LIMIT must be within 1..100.")
        if self.analytics.active:
            _validate_http_url(self.analytics.posthog_host, name="SHIPYARD_POSTHOG_HOST")


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _validate_http_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


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
