"""Force-degraded switch: a periodically refreshed snapshot of the admin flag."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Final

from app.storage.flags_repo import FlagsRepository

FORCE_DEGRADED_FLAG: Final[str] = "force_degraded"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DegradedModeSnapshot:
  force_degraded: bool
  refreshed_at: float


def parse_flag(value: str | None) -> bool:
  return str(value or "").strip().lower() in {"1", "true", "yes", "on"}


class DegradedModePoller:
  """Keeps a bounded-staleness view of ``admin_flags.force_degraded``.

  A background task refreshes the snapshot every ``refresh_seconds``. Readers
  call ``current()``, which refreshes inline when the snapshot is older than the
  window, so a stalled loop cannot leave the worker on a stale value. Refresh
  failures keep the last known value.
  """

  def __init__(self, flags_repo: FlagsRepository, *, refresh_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic) -> None:
    self._flags_repo = flags_repo
    self._refresh_seconds = float(refresh_seconds)
    self._clock = clock
    self._snapshot: DegradedModeSnapshot | None = None
    self._task: asyncio.Task[None] | None = None

  @property
  def running(self) -> bool:
    return self._task is not None and not self._task.done()

  def peek(self) -> DegradedModeSnapshot | None:
    return self._snapshot

  async def refresh(self) -> DegradedModeSnapshot:
    try:
      value = await self._flags_repo.get_flag(FORCE_DEGRADED_FLAG)
    except Exception as exc:  # noqa: BLE001 - keep serving the last known value
      logger.warning("Failed to refresh force_degraded flag: %s", exc)
      previous = self._snapshot.force_degraded if self._snapshot is not None else False
      self._snapshot = DegradedModeSnapshot(force_degraded=previous, refreshed_at=self._clock())
      return self._snapshot
    self._snapshot = DegradedModeSnapshot(force_degraded=parse_flag(value), refreshed_at=self._clock())
    return self._snapshot

  async def current(self) -> DegradedModeSnapshot:
    snapshot = self._snapshot
    if snapshot is None or self._clock() - snapshot.refreshed_at >= self._refresh_seconds:
      return await self.refresh()
    return snapshot

  async def set_force_degraded(self, enabled: bool) -> DegradedModeSnapshot:
    await self._flags_repo.set_flag(FORCE_DEGRADED_FLAG, "1" if enabled else "0")
    self._snapshot = DegradedModeSnapshot(force_degraded=bool(enabled), refreshed_at=self._clock())
    logger.info("force_degraded set to %s", enabled)
    return self._snapshot

  def start(self) -> None:
    if self.running:
      return
    self._task = asyncio.create_task(self._run(), name="degraded-mode-poller")

  async def stop(self) -> None:
    task = self._task
    self._task = None
    if task is None:
      return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await task

  async def _run(self) -> None:
    while True:
      await self.refresh()
      await asyncio.sleep(self._refresh_seconds)
