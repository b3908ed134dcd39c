"""Midjourney-style task provider served by Legnext."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from colorbook.ai.providers.base import AsyncImageProvider, ImageProviderError, ImageTaskStatus, TaskState, error_for_status

logger = logging.getLogger(__name__)


def map_task_state(raw_status: str | None) -> TaskState:
  """Collapse provider task states to processing/completed/failed."""
  normalized = (raw_status or "").strip().lower()
  if normalized in {"completed", "success"}:
    return "completed"
  if normalized in {"failed", "error"}:
    return "failed"
  return "processing"


class LegnextProvider(AsyncImageProvider):
  """Submit a diffusion task, then poll it by id."""

  name = "midjourney"

  def __init__(self, *, api_key: str | None, base_url: str, timeout_seconds: int = 30, transport: httpx.AsyncBaseTransport | None = None) -> None:
    if not api_key:
      raise ValueError("COLORBOOK_LEGNEXT_API_KEY is required for the midjourney provider")
    self._api_key = api_key
    self._base_url = base_url.rstrip("/")
    self._timeout = float(timeout_seconds)
    self._transport = transport

  async def _request(self, method: str, path: str, *, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
    async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport, trust_env=False) as client:
      try:
        response = await client.request(method, path, json=json_body, headers={"x-api-key": self._api_key})
      except httpx.RequestError as exc:
        raise ImageProviderError(f"Legnext unreachable: {exc}") from exc

    if response.is_error:
      logger.warning("Legnext %s %s returned %s", method, path, response.status_code)
      raise error_for_status(response.status_code, response.text)
    try:
      return response.json()
    except ValueError as exc:
      raise ImageProviderError("Legnext returned a non-JSON body", status_code=response.status_code) from exc

  async def submit(self, prompt: str) -> str:
    data = await self._request("POST", "/diffusion", json_body={"text": prompt})
    task_id = data.get("job_id")
    if not task_id:
      raise ImageProviderError("Legnext did not return a job id")
    return str(task_id)

  async def get_status(self, task_id: str) -> ImageTaskStatus:
    data = await self._request("GET", f"/task/{task_id}")
    state = map_task_state(data.get("status"))
    output = data.get("output") or {}
    image_url = output.get("image_url") if isinstance(output, dict) else None
    error = None
    if state == "failed":
      error = str(data.get("error") or data.get("message") or "Generation failed")
    return ImageTaskStatus(task_id=task_id, status=state, progress=100 if state == "completed" else 50, image_url=image_url, error=error)
