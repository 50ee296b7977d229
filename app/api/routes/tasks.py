from __future__ import annotations

import logging
import secrets
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, status

from app.api.deps import get_job_processor
from app.api.models import TaskPayload
from app.config import Settings, get_settings
from app.jobs.worker import JobProcessor
from app.services.jobs import process_job_sync

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


@router.post("/process-job", status_code=status.HTTP_200_OK)
async def process_job_task(
  payload: TaskPayload,
  background_tasks: BackgroundTasks,
  settings: Annotated[Settings, Depends(get_settings)],
  processor: Annotated[JobProcessor, Depends(get_job_processor)],
  authorization: str | None = Header(default=None),
  x_content_task_secret: str | None = Header(default=None),
) -> dict[str, str]:
  """
  Handler for pushed deliveries (local-http dispatch and manual recovery).
  Accepts the task quickly and processes the job in the background.
  """
  # Secure-by-default: internal task endpoints must be authenticated to avoid arbitrary job execution.
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  expected_auth = f"Bearer {settings.task_secret}"
  shared_secret_valid = secrets.compare_digest((x_content_task_secret or ""), settings.task_secret)
  bearer_valid = secrets.compare_digest((authorization or ""), expected_auth)
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to /process-job")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")

  logger.info("Received task for job %s", payload.job_id)
  background_tasks.add_task(process_job_sync, payload.job_id, processor)
  return {"status": "accepted"}
