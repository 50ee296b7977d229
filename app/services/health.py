"""Dependency probes for the admin health endpoint."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import text

from app.ai.providers import get_generation_backend
from app.config import Settings
from app.core.database import get_db_engine
from app.services.runtime import get_degraded_mode, get_worker_pool
from app.services.tasks.postgres_queue import PostgresDispatchQueue

logger = logging.getLogger(__name__)


async def _ping_database() -> dict[str, Any]:
  engine = get_db_engine()
  if engine is None:
    return {"ok": False, "error": "not_configured"}
  try:
    async with engine.connect() as connection:
      await connection.execute(text("SELECT 1"))
  except Exception as exc:  # noqa: BLE001 - health probes report failures instead of raising
    logger.warning("Database ping failed: %s", exc)
    return {"ok": False, "error": type(exc).__name__}
  return {"ok": True}


async def _queue_depth(settings: Settings) -> dict[str, Any]:
  if settings.task_service_provider != "postgres":
    return {"ok": True, "provider": settings.task_service_provider, "depth": None}
  try:
    depth = await PostgresDispatchQueue().depth()
  except Exception as exc:  # noqa: BLE001 - health probes report failures instead of raising
    logger.warning("Queue depth probe failed: %s", exc)
    return {"ok": False, "provider": settings.task_service_provider, "error": type(exc).__name__}
  return {"ok": True, "provider": settings.task_service_provider, "depth": depth}


async def dependency_health(settings: Settings) -> dict[str, Any]:
  """Report database, queue, backend, worker and degraded-mode state."""
  database = await _ping_database()
  queue = await _queue_depth(settings)
  backend = get_generation_backend(settings)
  # Store-backed singletons can only be built once the database is configured.
  snapshot = get_degraded_mode(settings).peek() if database["ok"] else None
  worker_running = get_worker_pool(settings).running if settings.worker_enabled and database["ok"] else False
  return {
    "ok": bool(database["ok"] and queue["ok"]),
    "database": database,
    "queue": queue,
    "backend": {"configured": backend.configured},
    "worker": {"enabled": settings.worker_enabled, "running": worker_running},
    "degraded": {"force_degraded": snapshot.force_degraded if snapshot else None, "refreshed": snapshot is not None},
  }
