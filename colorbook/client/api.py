"""Typed calls against the coloring book job service."""

from __future__ import annotations

from typing import Any

import httpx

from colorbook.client.session import ClientSession


class ApiError(Exception):
  """The service answered with an error status."""

  def __init__(self, status_code: int, detail: str) -> None:
    super().__init__(detail)
    self.status_code = status_code
    self.detail = detail


class RateLimitedError(ApiError):
  """The image provider is throttling; stop issuing requests for now."""


class UsageLimitError(ApiError):
  """Provider credits or usage limits are exhausted."""


def _error_for(response: httpx.Response) -> ApiError:
  detail = response.reason_phrase or "Request failed"
  try:
    body = response.json()
  except ValueError:
    body = None
  if isinstance(body, dict) and body.get("detail"):
    detail = str(body["detail"])
  if response.status_code == 429:
    return RateLimitedError(response.status_code, detail)
  if response.status_code == 402:
    return UsageLimitError(response.status_code, detail)
  return ApiError(response.status_code, detail)


class ColoringBookApi:
  """One method per endpoint; payloads are the service's camelCase JSON."""

  def __init__(self, session: ClientSession) -> None:
    self._session = session

  async def _call(self, method: str, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
    response = await self._session.request(method, path, json=json, params=params)
    if response.is_error:
      raise _error_for(response)
    if response.status_code == 204 or not response.content:
      return None
    return response.json()

  async def start_export(self, book_id: str, book_title: str | None = None) -> dict[str, Any]:
    return await self._call("POST", "/v1/exports", json={"bookId": book_id, "bookTitle": book_title})

  async def resume_export(self, job_id: str) -> dict[str, Any]:
    return await self._call("POST", "/v1/exports", json={"jobId": job_id})

  async def get_active_export(self, book_id: str) -> dict[str, Any] | None:
    body = await self._call("GET", "/v1/exports/active", params={"bookId": book_id})
    return body.get("job") if body else None

  async def get_export(self, job_id: str) -> dict[str, Any]:
    return await self._call("GET", f"/v1/exports/{job_id}")

  async def create_generation_job(
    self, book_id: str, prompts: list[str], *, model: str | None = None, border: str = "none", add_bleed: bool = False, notify_email: str | None = None
  ) -> dict[str, Any]:
    payload = {"bookId": book_id, "prompts": prompts, "model": model, "border": border, "addBleed": add_bleed, "notifyEmail": notify_email}
    return await self._call("POST", "/v1/generation-jobs", json=payload)

  async def get_generation_job(self, job_id: str) -> dict[str, Any]:
    return await self._call("GET", f"/v1/generation-jobs/{job_id}")

  async def list_generation_jobs(self) -> list[dict[str, Any]]:
    body = await self._call("GET", "/v1/generation-jobs")
    return list(body.get("jobs") or [])

  async def delete_generation_job(self, job_id: str) -> None:
    await self._call("DELETE", f"/v1/generation-jobs/{job_id}")

  async def generate_image(self, prompt: str, *, model: str | None = None) -> dict[str, Any]:
    return await self._call("POST", "/v1/images/generate", json={"prompt": prompt, "model": model})

  async def imagine(self, prompt: str) -> str:
    body = await self._call("POST", "/v1/images/imagine", json={"prompt": prompt})
    return str(body["taskId"])

  async def get_image_task(self, task_id: str) -> dict[str, Any]:
    return await self._call("GET", f"/v1/images/tasks/{task_id}")
