"""In-process worker pool consuming the dispatch queue."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Protocol

from app.jobs.models import JobRecord
from app.services.tasks.postgres_queue import QueueDelivery

logger = logging.getLogger(__name__)


class DispatchQueue(Protocol):
  """Consumer contract of the at-least-once queue."""

  async def claim(self) -> QueueDelivery | None:
    """Take the next deliverable entry, or None when idle."""

  async def ack(self, delivery: QueueDelivery) -> bool:
    """Remove a delivered entry."""

  async def nack(self, delivery: QueueDelivery, error: str) -> str:
    """Reschedule or fail an entry; returns the resulting status."""


class JobRunner(Protocol):
  async def process_job(self, job_id: str) -> JobRecord | None:
    """Drive a job to a terminal state."""


class WorkerPool:
  """Fixed number of consumer loops; each delivery is acked or nacked exactly once."""

  def __init__(self, *, queue: DispatchQueue, runner: JobRunner, concurrency: int = 3, poll_seconds: float = 1.0) -> None:
    self._queue = queue
    self._runner = runner
    self._concurrency = max(1, int(concurrency))
    self._poll_seconds = float(poll_seconds)
    self._stopping = asyncio.Event()
    self._tasks: list[asyncio.Task[None]] = []

  @property
  def running(self) -> bool:
    return any(not task.done() for task in self._tasks)

  def start(self) -> None:
    if self.running:
      return
    self._stopping.clear()
    self._tasks = [asyncio.create_task(self._run_slot(slot), name=f"content-worker-{slot}") for slot in range(self._concurrency)]
    logger.info("Worker pool started with %d slots", self._concurrency)

  async def stop(self) -> None:
    self._stopping.set()
    tasks, self._tasks = self._tasks, []
    for task in tasks:
      task.cancel()
    for task in tasks:
      with contextlib.suppress(asyncio.CancelledError):
        await task
    logger.info("Worker pool stopped")

  async def run_once(self, delivery: QueueDelivery) -> str:
    """Process one delivery and settle it on the queue; returns ``acked`` or the nack status."""
    try:
      await self._runner.process_job(delivery.job_id)
    except Exception as exc:  # noqa: BLE001 - redelivery is the queue's job
      logger.error("Delivery of job %s failed (attempt %d/%d)", delivery.job_id, delivery.attempts, delivery.max_attempts, exc_info=True)
      status = await self._queue.nack(delivery, str(exc) or type(exc).__name__)
      if status == "failed":
        logger.error("Job %s exhausted its delivery attempts", delivery.job_id)
      return status
    await self._queue.ack(delivery)
    return "acked"

  async def _run_slot(self, slot: int) -> None:
    while not self._stopping.is_set():
      try:
        delivery = await self._queue.claim()
      except Exception as exc:  # noqa: BLE001 - keep the slot alive through outages
        logger.warning("Worker slot %d failed to claim: %s", slot, exc)
        delivery = None
      if delivery is None:
        await self._idle()
        continue
      try:
        await self.run_once(delivery)
      except Exception as exc:  # noqa: BLE001 - the lease expiry makes the entry deliverable again
        logger.warning("Worker slot %d could not settle job %s: %s", slot, delivery.job_id, exc)

  async def _idle(self) -> None:
    with contextlib.suppress(TimeoutError):
      await asyncio.wait_for(self._stopping.wait(), timeout=self._poll_seconds)
