from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlparse

import httpx

from colorbook.config import Settings
from colorbook.services.tasks.interface import ContinuationTask, TaskEnqueuer

logger = logging.getLogger(__name__)


class LocalHttpEnqueuer(TaskEnqueuer):
  """Delivers continuations via local HTTP requests to simulate Cloud Tasks.

  Called from a background task, so the delay runs after the current response is sent.
  """

  def __init__(self, settings: Settings) -> None:
    self.settings = settings

  def _should_use_asgi_transport(self, base_url: str) -> bool:
    """Decide if we should route requests in-process via ASGITransport."""
    parsed = urlparse(base_url)
    hostname = (parsed.hostname or "").lower()
    return hostname in {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

  def _build_client(self, base_url: str) -> httpx.AsyncClient:
    """Build an httpx client for local task dispatch."""
    # Never trust environment proxy variables for internal task dispatch.
    if self._should_use_asgi_transport(base_url):
      from colorbook.main import app

      transport = httpx.ASGITransport(app=app)
      return httpx.AsyncClient(transport=transport, base_url=base_url, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  def _task_headers(self) -> dict[str, str]:
    """Build task authentication headers for internal endpoints."""
    if not self.settings.task_secret:
      raise RuntimeError("Task secret not configured.")
    return {"authorization": f"Bearer {self.settings.task_secret}"}

  async def enqueue(self, task: ContinuationTask) -> None:
    """Wait out the delay, then POST the continuation to the local endpoint."""
    if not self.settings.base_url:
      raise RuntimeError("Base URL not configured, strictly required for LocalHttpEnqueuer.")

    url = f"{self.settings.base_url.rstrip('/')}{task.path}"
    headers = self._task_headers()
    if task.delay_seconds > 0:
      await asyncio.sleep(task.delay_seconds)

    try:
      async with self._build_client(self.settings.base_url) as client:
        logger.info("Dispatching %s continuation locally to %s job=%s cursor=%s", task.kind, url, task.job_id, task.cursor)
        response = await client.post(url, json=task.payload(), headers=headers, timeout=float(self.settings.provider_timeout_seconds) + 60.0)
        response.raise_for_status()

    except httpx.HTTPStatusError as e:
      logger.error("Local task dispatch returned %s for %s job %s: %s", e.response.status_code, task.kind, task.job_id, e.response.text)
      raise
    except httpx.RequestError as e:
      logger.error("Failed to dispatch local task for %s job %s: %s", task.kind, task.job_id, e)
      raise
