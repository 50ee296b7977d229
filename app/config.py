"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

_TASK_PROVIDERS = {"postgres", "local-http"}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the content engine service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  task_service_provider: str
  base_url: str | None
  task_secret: str | None
  admin_token: str | None
  admin_tenant_id: str | None
  worker_enabled: bool
  worker_concurrency: int
  queue_max_attempts: int
  queue_backoff_ms: int
  queue_poll_seconds: float
  queue_lease_seconds: int
  degraded_refresh_seconds: float
  default_plan_code: str
  default_monthly_quota: int
  max_items_per_job: int
  openai_api_key: str | None
  openai_model: str
  openai_base_url: str | None
  openai_timeout_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("CONTENT_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("CONTENT_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("CONTENT_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("CONTENT_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("CONTENT_DEBUG"))

  log_max_bytes = _positive_int("CONTENT_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("CONTENT_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("CONTENT_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("CONTENT_LOG_HTTP_4XX"))

  task_service_provider = os.getenv("CONTENT_TASK_SERVICE_PROVIDER", "postgres").strip().lower()
  if task_service_provider not in _TASK_PROVIDERS:
    raise ValueError(f"CONTENT_TASK_SERVICE_PROVIDER must be one of: {', '.join(sorted(_TASK_PROVIDERS))}.")

  queue_backoff_ms = int(os.getenv("CONTENT_QUEUE_BACKOFF_MS", "2000"))
  if queue_backoff_ms < 0:
    raise ValueError("CONTENT_QUEUE_BACKOFF_MS must be zero or a positive integer.")

  default_plan_code = (os.getenv("CONTENT_DEFAULT_PLAN_CODE") or "starter").strip()
  default_monthly_quota = int(os.getenv("CONTENT_DEFAULT_MONTHLY_QUOTA", "500"))
  if default_monthly_quota < 0:
    raise ValueError("CONTENT_DEFAULT_MONTHLY_QUOTA must be zero or a positive integer.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("CONTENT_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=os.getenv("CONTENT_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("CONTENT_PG_CONNECT_TIMEOUT", "5"),
    task_service_provider=task_service_provider,
    base_url=_optional_str(os.getenv("CONTENT_BASE_URL")),
    task_secret=_optional_str(os.getenv("CONTENT_TASK_SECRET")),
    admin_token=_optional_str(os.getenv("CONTENT_ADMIN_TOKEN")),
    admin_tenant_id=_optional_str(os.getenv("CONTENT_ADMIN_TENANT_ID")),
    worker_enabled=_parse_bool(os.getenv("CONTENT_WORKER_ENABLED"), default=True),
    worker_concurrency=_positive_int("CONTENT_WORKER_CONCURRENCY", "3"),
    queue_max_attempts=_positive_int("CONTENT_QUEUE_MAX_ATTEMPTS", "3"),
    queue_backoff_ms=queue_backoff_ms,
    queue_poll_seconds=_positive_float("CONTENT_QUEUE_POLL_SECONDS", "1.0"),
    queue_lease_seconds=_positive_int("CONTENT_QUEUE_LEASE_SECONDS", "900"),
    degraded_refresh_seconds=_positive_float("CONTENT_DEGRADED_REFRESH_SECONDS", "5.0"),
    default_plan_code=default_plan_code or "starter",
    default_monthly_quota=default_monthly_quota,
    max_items_per_job=_positive_int("CONTENT_MAX_ITEMS_PER_JOB", "50"),
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    openai_model=(os.getenv("OPENAI_MODEL") or "gpt-4o-mini").strip(),
    openai_base_url=_optional_str(os.getenv("OPENAI_BASE_URL")),
    openai_timeout_seconds=_positive_float("CONTENT_OPENAI_TIMEOUT_SECONDS", "60"),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("CONTENT_DEBUG"))
  pg_connect_timeout = _positive_int("CONTENT_PG_CONNECT_TIMEOUT", "5")

  # Support fallback to DATABASE_URL for platform-provided databases.
  pg_dsn = os.getenv("CONTENT_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
