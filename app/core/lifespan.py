import logging
import os
import subprocess
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import urlparse

from fastapi import FastAPI

from app.core.database import dispose_engine, get_db_engine
from app.core.logging import _initialize_logging
from app.services.runtime import get_degraded_mode, get_worker_pool


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, then run the degraded-mode poller and worker pool for the app's lifetime."""
  from app.config import get_settings

  # Load settings for startup initialization.
  settings = get_settings()
  # Create a module logger for lifespan events.
  logger = logging.getLogger("app.core.lifespan")

  try:
    # Initialize logging with configured settings.
    _initialize_logging(settings)
    # Emit a startup confirmation log for operators.
    logger.info("Startup complete - logging verified. database=%s", _redact_dsn(settings.pg_dsn))
    # Apply migrations at startup when the flag is enabled.
    if _parse_env_bool(os.getenv("CONTENT_AUTO_APPLY_MIGRATIONS")):
      # Avoid startup migrations in production-like environments unless explicitly forced.
      if settings.environment in {"production", "prod", "stage", "staging"} and not _parse_env_bool(os.getenv("CONTENT_FORCE_STARTUP_MIGRATIONS")):
        logger.info("Skipping startup migrations for environment=%s", settings.environment)
      else:
        repo_root = Path(__file__).resolve().parents[2]
        subprocess.run([sys.executable, "-m", "alembic", "upgrade", "head"], check=True, cwd=repo_root)

  except Exception as exc:
    # Log initialization failures but allow the app to continue starting.
    if isinstance(exc, subprocess.CalledProcessError):
      logger.warning("Startup migrations failed; migrator returned non-zero exit status.", exc_info=True)
    else:
      logger.warning("Initial logging setup failed; will retry on lifespan.", exc_info=True)

  # Background consumers need the database; without it the service only answers requests.
  background = settings.worker_enabled and get_db_engine() is not None
  if background:
    get_degraded_mode(settings).start()
    get_worker_pool(settings).start()
  else:
    logger.info("Worker pool disabled (worker_enabled=%s, database configured=%s)", settings.worker_enabled, get_db_engine() is not None)

  try:
    yield
  finally:
    if background:
      await get_worker_pool(settings).stop()
      await get_degraded_mode(settings).stop()
    await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  # Provide a stable placeholder when the DSN is missing.
  if not raw:
    return "<unset>"

  # Parse the DSN so we can safely strip credentials.
  parsed = urlparse(raw)
  # Guard against malformed DSNs without a scheme.
  if not parsed.scheme:
    return "<invalid>"

  # Build a sanitized netloc with username and host metadata only.
  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  # Preserve the database name when available.
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"


def _parse_env_bool(value: str | None) -> bool:
  """Parse a boolean-like environment value."""
  # Treat common truthy values as enabled.
  if value is None:
    return False
  return value.strip().lower() in {"1", "true", "yes", "on"}
