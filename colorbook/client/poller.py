"""Client-side polling of job rows and provider tasks.

A poller reads immediately, then on a fixed cadence, and stops by itself on a terminal status.
It is cancellable at any point so a caller that switches jobs never leaves a loop running.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import httpx

from colorbook.client.api import ApiError, ColoringBookApi

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed"})


@dataclass(frozen=True)
class JobSnapshot:
  """One read of a job (or provider task) as the UI needs it."""

  job_id: str
  status: str
  processed: int = 0
  total: int = 0
  failed: int = 0
  artifact_url: str | None = None
  error: str | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES

  @classmethod
  def from_export(cls, payload: dict[str, Any]) -> JobSnapshot:
    return cls(
      job_id=str(payload["jobId"]),
      status=str(payload["status"]),
      processed=int(payload.get("processedUnits") or 0),
      total=int(payload.get("totalUnits") or 0),
      failed=int(payload.get("failedUnits") or 0),
      artifact_url=payload.get("downloadUrl"),
      error=payload.get("errorMessage"),
    )

  @classmethod
  def from_generation(cls, payload: dict[str, Any]) -> JobSnapshot:
    completed = int(payload.get("completedCount") or 0)
    failed = int(payload.get("failedCount") or 0)
    return cls(job_id=str(payload["jobId"]), status=str(payload["status"]), processed=completed + failed, total=int(payload.get("totalCount") or 0), failed=failed, error=payload.get("errorMessage"))

  @classmethod
  def from_image_task(cls, task_id: str, payload: dict[str, Any]) -> JobSnapshot:
    status = normalize_task_status(payload.get("status"))
    progress = 100 if status == "completed" else int(payload.get("progress") or 0)
    error = payload.get("error") or ("Image generation failed" if status == "failed" else None)
    return cls(job_id=task_id, status=status, processed=progress, total=100, artifact_url=payload.get("imageUrl"), error=error)


def normalize_task_status(raw: str | None) -> str:
  """Collapse provider task states; older deployments also report `finished`."""
  value = (raw or "").strip().lower()
  if value in {"completed", "success", "finished"}:
    return "completed"
  if value in {"failed", "error"}:
    return "failed"
  return "processing"


FetchSnapshot = Callable[[], Awaitable[JobSnapshot]]
UpdateCallback = Callable[[JobSnapshot], None]


class JobPoller:
  """Poll `fetch` until it reports a terminal status."""

  def __init__(self, fetch: FetchSnapshot, *, interval_seconds: float = 2.0, on_update: UpdateCallback | None = None, max_consecutive_errors: int = 5) -> None:
    if interval_seconds <= 0:
      raise ValueError("interval_seconds must be positive")
    self._fetch = fetch
    self._interval = interval_seconds
    self._on_update = on_update
    self._max_errors = max_consecutive_errors
    self._task: asyncio.Task[JobSnapshot] | None = None
    self.latest: JobSnapshot | None = None

  def start(self) -> JobPoller:
    self._ensure_task()
    return self

  def _ensure_task(self) -> asyncio.Task[JobSnapshot]:
    if self._task is None:
      self._task = asyncio.create_task(self._run())
    return self._task

  @property
  def done(self) -> bool:
    return self._task is not None and self._task.done()

  def cancel(self) -> None:
    if self._task is not None and not self._task.done():
      self._task.cancel()

  async def wait(self) -> JobSnapshot:
    """Return the terminal snapshot; raises CancelledError if the poller was cancelled."""
    return await self._ensure_task()

  async def _run(self) -> JobSnapshot:
    errors = 0
    while True:
      try:
        snapshot = await self._fetch()
      except (ApiError, httpx.HTTPError) as exc:
        # A missed read is not a job failure; keep the cadence until reads keep failing.
        errors += 1
        logger.warning("Poll failed (%s/%s): %s", errors, self._max_errors, exc)
        if errors >= self._max_errors:
          raise
      else:
        errors = 0
        self.latest = snapshot
        if self._on_update is not None:
          self._on_update(snapshot)
        if snapshot.is_terminal:
          return snapshot
      await asyncio.sleep(self._interval)


class _JobTracker:
  """Own at most one poller; following another job cancels the previous one, leaving the context cancels the current one."""

  def __init__(self, api: ColoringBookApi, *, interval_seconds: float = 2.0, on_update: UpdateCallback | None = None) -> None:
    self._api = api
    self._interval = interval_seconds
    self._on_update = on_update
    self._poller: JobPoller | None = None
    self.job_id: str | None = None

  async def __aenter__(self) -> _JobTracker:
    return self

  async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
    self.cancel()

  def _follow(self, job_id: str, fetch: FetchSnapshot) -> JobPoller:
    self.cancel()
    self.job_id = job_id
    self._poller = JobPoller(fetch, interval_seconds=self._interval, on_update=self._on_update).start()
    return self._poller

  def cancel(self) -> None:
    if self._poller is not None:
      self._poller.cancel()
      self._poller = None


class ExportTracker(_JobTracker):
  """Drive the export button: attach to a running export or start one, then poll it."""

  async def track(self, book_id: str, book_title: str | None = None) -> JobPoller:
    """Resume the book's active export when there is one, otherwise start a new one."""
    self.cancel()
    active = await self._api.get_active_export(book_id)
    if active is not None:
      job_id = str(active["jobId"])
      await self._api.resume_export(job_id)
    else:
      created = await self._api.start_export(book_id, book_title)
      job_id = str(created["jobId"])
    return self.follow(job_id)

  def follow(self, job_id: str) -> JobPoller:
    """Poll an existing export job."""

    async def _fetch() -> JobSnapshot:
      return JobSnapshot.from_export(await self._api.get_export(job_id))

    return self._follow(job_id, _fetch)


class GenerationJobTracker(_JobTracker):
  """Watch a server-side batch while its prompts are generated one after another."""

  async def submit(
    self, book_id: str, prompts: list[str], *, model: str | None = None, border: str = "none", add_bleed: bool = False, notify_email: str | None = None
  ) -> JobPoller:
    created = await self._api.create_generation_job(book_id, prompts, model=model, border=border, add_bleed=add_bleed, notify_email=notify_email)
    return self.follow(str(created["jobId"]))

  def follow(self, job_id: str) -> JobPoller:
    async def _fetch() -> JobSnapshot:
      return JobSnapshot.from_generation(await self._api.get_generation_job(job_id))

    return self._follow(job_id, _fetch)


class ImageTaskPoller:
  """Single-page generation through either provider shape.

  The synchronous provider resolves in one call, so its poll finishes on the first read with no
  interval; the task-based provider is polled until it completes or fails.
  """

  def __init__(self, api: ColoringBookApi, *, interval_seconds: float = 3.0, on_update: UpdateCallback | None = None) -> None:
    self._api = api
    self._interval = interval_seconds
    self._on_update = on_update
    self._poller: JobPoller | None = None

  async def generate(self, prompt: str, *, model: str | None = None) -> JobSnapshot:
    result = await self._api.generate_image(prompt, model=model)

    async def _resolved() -> JobSnapshot:
      return JobSnapshot(job_id="sync", status="completed", processed=100, total=100, artifact_url=result.get("imageUrl"))

    return await self._poll(_resolved)

  async def imagine(self, prompt: str) -> JobSnapshot:
    task_id = await self._api.imagine(prompt)

    async def _fetch() -> JobSnapshot:
      return JobSnapshot.from_image_task(task_id, await self._api.get_image_task(task_id))

    return await self._poll(_fetch)

  async def _poll(self, fetch: FetchSnapshot) -> JobSnapshot:
    self.cancel()
    self._poller = JobPoller(fetch, interval_seconds=self._interval, on_update=self._on_update)
    return await self._poller.wait()

  def cancel(self) -> None:
    if self._poller is not None:
      self._poller.cancel()
      self._poller = None
