from __future__ import annotations

import pytest

from app.services.degraded_mode import FORCE_DEGRADED_FLAG, DegradedModePoller, parse_flag


class _Clock:
  def __init__(self) -> None:
    self.now = 100.0

  def __call__(self) -> float:
    return self.now


def test_parse_flag():
  assert parse_flag("1") is True
  assert parse_flag("true") is True
  assert parse_flag("0") is False
  assert parse_flag(None) is False


@pytest.mark.anyio
async def test_current_refreshes_only_after_window(flags_repo):
  clock = _Clock()
  poller = DegradedModePoller(flags_repo, refresh_seconds=5.0, clock=clock)

  assert (await poller.current()).force_degraded is False
  flags_repo.flags[FORCE_DEGRADED_FLAG] = "1"
  clock.now += 1
  assert (await poller.current()).force_degraded is False
  assert flags_repo.reads == 1

  clock.now += 5
  assert (await poller.current()).force_degraded is True
  assert flags_repo.reads == 2


@pytest.mark.anyio
async def test_refresh_failure_keeps_last_value(flags_repo):
  poller = DegradedModePoller(flags_repo, refresh_seconds=5.0)
  flags_repo.flags[FORCE_DEGRADED_FLAG] = "1"
  await poller.refresh()

  flags_repo.fail = True
  snapshot = await poller.refresh()

  assert snapshot.force_degraded is True


@pytest.mark.anyio
async def test_set_force_degraded_persists_and_updates_snapshot(flags_repo):
  poller = DegradedModePoller(flags_repo, refresh_seconds=5.0)

  snapshot = await poller.set_force_degraded(True)

  assert snapshot.force_degraded is True
  assert flags_repo.flags[FORCE_DEGRADED_FLAG] == "1"
  assert poller.peek().force_degraded is True
