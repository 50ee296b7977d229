from __future__ import annotations

from app.config import Settings
from app.services.tasks.interface import TaskEnqueuer
from app.services.tasks.local import LocalHttpEnqueuer
from app.services.tasks.postgres_queue import PostgresQueueEnqueuer


def get_task_enqueuer(settings: Settings) -> TaskEnqueuer:
  """Factory to get the configured task enqueuer."""
  if settings.task_service_provider == "local-http":
    return LocalHttpEnqueuer(settings)
  return PostgresQueueEnqueuer(max_attempts=settings.queue_max_attempts)
