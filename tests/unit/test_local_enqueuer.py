from __future__ import annotations

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from app.core.errors import DispatchError
from app.services.tasks.local import LocalHttpEnqueuer


def _client(response: httpx.Response | None = None, error: Exception | None = None) -> MagicMock:
  client = MagicMock()
  client.__aenter__ = AsyncMock(return_value=client)
  client.__aexit__ = AsyncMock(return_value=None)
  client.post = AsyncMock(return_value=response, side_effect=error)
  return client


@pytest.mark.anyio
async def test_enqueue_posts_job_with_task_secret(settings):
  enqueuer = LocalHttpEnqueuer(replace(settings, base_url="http://example.test/"))
  request = httpx.Request("POST", "http://example.test/internal/tasks/process-job")
  client = _client(httpx.Response(200, json={"status": "accepted"}, request=request))

  with patch("app.services.tasks.local.httpx.AsyncClient", return_value=client):
    await enqueuer.enqueue("job-1", {"job_id": "job-1"})

  args, kwargs = client.post.await_args
  assert args[0] == "http://example.test/internal/tasks/process-job"
  assert kwargs["json"] == {"job_id": "job-1"}
  assert kwargs["headers"] == {"authorization": "Bearer test-task-secret"}


@pytest.mark.anyio
async def test_enqueue_maps_http_errors(settings):
  enqueuer = LocalHttpEnqueuer(replace(settings, base_url="http://example.test"))
  request = httpx.Request("POST", "http://example.test/internal/tasks/process-job")
  client = _client(httpx.Response(503, text="unavailable", request=request))

  with patch("app.services.tasks.local.httpx.AsyncClient", return_value=client), pytest.raises(DispatchError, match="dispatch_http_503"):
    await enqueuer.enqueue("job-1", {"job_id": "job-1"})


@pytest.mark.anyio
async def test_enqueue_maps_transport_errors(settings):
  enqueuer = LocalHttpEnqueuer(replace(settings, base_url="http://example.test"))
  client = _client(error=httpx.ConnectError("refused"))

  with patch("app.services.tasks.local.httpx.AsyncClient", return_value=client), pytest.raises(DispatchError, match="refused"):
    await enqueuer.enqueue("job-1", {"job_id": "job-1"})


@pytest.mark.anyio
async def test_enqueue_requires_base_url_and_secret(settings):
  with pytest.raises(DispatchError):
    await LocalHttpEnqueuer(replace(settings, base_url=None)).enqueue("job-1", {})
  with pytest.raises(DispatchError):
    await LocalHttpEnqueuer(replace(settings, base_url="http://example.test", task_secret=None)).enqueue("job-1", {})


@pytest.mark.anyio
async def test_pushed_requests_cannot_be_removed(settings):
  assert await LocalHttpEnqueuer(settings).remove("job-1") is False
