from __future__ import annotations

from typing import Protocol


class TaskEnqueuer(Protocol):
  """Interface for handing jobs to the dispatch queue."""

  async def enqueue(self, job_id: str, payload: dict) -> None:
    """Enqueue a job for processing; raises DispatchError when the handoff fails."""
    ...

  async def remove(self, job_id: str) -> bool:
    """Drop a pending entry for the job; returns False when nothing was removed."""
    ...
