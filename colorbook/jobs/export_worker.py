"""Chained export of a book's pages into a ZIP archive, one page per invocation.

Each invocation stages at most one page, so a single oversized page payload can never push
an invocation past the host's time or memory ceiling. Progress is persisted right after the
page is staged; the continuation is scheduled only after that write succeeds.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from starlette.concurrency import run_in_threadpool

from colorbook.config import Settings
from colorbook.jobs.archive import archive_key, build_archive, decode_data_url, sanitize_title, staged_filename, staging_prefix
from colorbook.jobs.errors import CONTINUATION_FAILURE_MESSAGE, InvalidImagePayloadError, NothingStagedError
from colorbook.jobs.models import ExportJobRecord
from colorbook.services.storage_client import ObjectStorage
from colorbook.services.tasks.dispatch import EnqueueFailureHandler, ScheduleContinuation
from colorbook.services.tasks.interface import ContinuationTask
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.jobs_repo import ExportJobsRepository

logger = logging.getLogger(__name__)

ExportAction = Literal["not_found", "noop", "stale", "staged", "skipped_unit", "finalized", "failed"]


@dataclass(frozen=True)
class UnitOutcome:
  """What one export invocation did."""

  job_id: str
  action: ExportAction
  job: ExportJobRecord | None = None

  @property
  def success(self) -> bool:
    return self.action in {"staged", "skipped_unit", "finalized"}

  def to_payload(self) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": self.success, "action": self.action}
    if self.job is not None:
      payload["status"] = self.job.status
      payload["processedUnits"] = self.job.processed_pages
      payload["totalUnits"] = self.job.total_pages
    return payload


class ExportProcessor:
  """Process one unit of an export job, or finalize it once every page is accounted for."""

  def __init__(
    self, *, jobs_repo: ExportJobsRepository, books_repo: BooksRepository, storage: ObjectStorage, settings: Settings, schedule: ScheduleContinuation, clock: Callable[[], float] = time.time
  ) -> None:
    self._jobs_repo = jobs_repo
    self._books_repo = books_repo
    self._storage = storage
    self._settings = settings
    self._schedule = schedule
    self._clock = clock

  async def process(self, job_id: str, *, cursor: int | None = None) -> UnitOutcome:
    """Run exactly one unit (or finalize) for a job; job-level failures are persisted, not raised."""
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      logger.info("Export job %s not found; ignoring invocation", job_id)
      return UnitOutcome(job_id=job_id, action="not_found")
    if job.is_terminal:
      logger.debug("Export job %s already %s; ignoring invocation", job_id, job.status)
      return UnitOutcome(job_id=job_id, action="noop", job=job)
    if cursor is not None and cursor != job.current_offset:
      # A duplicate or late delivery; the counter on the row is the source of truth.
      logger.info("Export job %s continuation cursor=%s does not match offset=%s; ignoring", job_id, cursor, job.current_offset)
      return UnitOutcome(job_id=job_id, action="stale", job=job)

    try:
      if job.status == "pending":
        claimed = await self._jobs_repo.mark_processing(job_id)
        if claimed is None:
          job = await self._jobs_repo.get_job(job_id)
          if job is None or job.is_terminal:
            return UnitOutcome(job_id=job_id, action="noop", job=job)
        else:
          logger.info("Export job %s processing book=%s total_pages=%s", job_id, job.book_id, job.total_pages)
          job = claimed

      if job.current_offset >= job.total_pages:
        return await self.finalize(job)

      unit_failed = not await self._stage_unit(job)
      advanced = await self._jobs_repo.advance(job_id, expected_offset=job.current_offset, unit_failed=unit_failed)
    except Exception as exc:  # noqa: BLE001
      logger.error("Export job %s failed at offset=%s", job_id, job.current_offset, exc_info=True)
      return await self._fail(job_id, f"Export failed: {_describe(exc)}")

    if advanced is None:
      logger.info("Export job %s offset=%s was advanced by another invocation", job_id, job.current_offset)
      return UnitOutcome(job_id=job_id, action="stale", job=await self._jobs_repo.get_job(job_id))

    logger.info("Export job %s progress %s/%s", job_id, advanced.processed_pages, advanced.total_pages)
    self._schedule(ContinuationTask(kind="export", job_id=job_id, cursor=advanced.current_offset))
    return UnitOutcome(job_id=job_id, action="skipped_unit" if unit_failed else "staged", job=advanced)

  async def _stage_unit(self, job: ExportJobRecord) -> bool:
    """Stage the page at the job's offset; False when the page has nothing exportable."""
    page_ref = await self._books_repo.get_page_ref_at(job.book_id, job.current_offset)
    if page_ref is None:
      logger.warning("Export job %s: no page at offset=%s (pages removed after job creation)", job.job_id, job.current_offset)
      return False

    # Load the heavy payload only for the one page this invocation handles.
    page = await self._books_repo.get_page(page_ref.page_id)
    if page is None:
      logger.warning("Export job %s: page %s disappeared before staging", job.job_id, page_ref.page_id)
      return False

    try:
      data, content_type, extension = decode_data_url(page.image_url)
    except InvalidImagePayloadError as exc:
      logger.warning("Export job %s: skipping page %s: %s", job.job_id, page.page_id, exc)
      return False

    key = staging_prefix(self._settings.export_staging_prefix, job.job_id) + staged_filename(job.current_offset + 1, page.page_id, extension)
    await self._storage.put(key, data, content_type)
    logger.debug("Export job %s staged %s (%s bytes)", job.job_id, key, len(data))
    return True

  async def finalize(self, job: ExportJobRecord) -> UnitOutcome:
    """Zip every staged page, publish the archive and complete the job."""
    if job.current_offset < job.total_pages:
      raise ValueError(f"Export job {job.job_id} cannot finalize at offset {job.current_offset}/{job.total_pages}")

    try:
      keys = await self._storage.list_keys(staging_prefix(self._settings.export_staging_prefix, job.job_id))
      if not keys:
        raise NothingStagedError("No pages could be staged for export")

      entries = [(key.rsplit("/", 1)[-1], await self._storage.get(key)) for key in keys]
      safe_title = sanitize_title(job.book_title)
      archive = await run_in_threadpool(build_archive, safe_title, entries)
      key = archive_key(self._settings.export_object_prefix, job.user_id, safe_title, int(self._clock() * 1000))
      download_url = await self._storage.put(key, archive, "application/zip")
      completed = await self._jobs_repo.complete_job(job.job_id, download_url=download_url)
    except NothingStagedError as exc:
      logger.warning("Export job %s has nothing to archive", job.job_id)
      return await self._fail(job.job_id, str(exc))
    except Exception as exc:  # noqa: BLE001
      logger.error("Export job %s failed to finalize", job.job_id, exc_info=True)
      return await self._fail(job.job_id, f"Failed to build archive: {_describe(exc)}")

    if completed is None:
      logger.info("Export job %s was finalized by another invocation", job.job_id)
      return UnitOutcome(job_id=job.job_id, action="noop", job=await self._jobs_repo.get_job(job.job_id))

    logger.info("Export job %s completed pages=%s archive=%s", job.job_id, len(entries), key)
    # Cleanup runs after completion is recorded and can never undo it.
    await self._cleanup_staged(job.job_id, keys)
    return UnitOutcome(job_id=job.job_id, action="finalized", job=completed)

  async def _cleanup_staged(self, job_id: str, keys: list[str]) -> None:
    removed = 0
    for key in keys:
      try:
        await self._storage.delete(key)
        removed += 1
      except Exception as exc:  # noqa: BLE001
        logger.warning("Export job %s: failed to delete staged object %s: %s", job_id, key, exc)
    logger.debug("Export job %s: removed %s/%s staged objects", job_id, removed, len(keys))

  async def _fail(self, job_id: str, message: str) -> UnitOutcome:
    try:
      failed = await self._jobs_repo.fail_job(job_id, error_message=message)
    except Exception:  # noqa: BLE001
      logger.error("Export job %s: could not record failure '%s'", job_id, message, exc_info=True)
      failed = None
    return UnitOutcome(job_id=job_id, action="failed", job=failed)


def export_enqueue_failure_handler(jobs_repo: ExportJobsRepository) -> EnqueueFailureHandler:
  """Fail an export whose next unit could not be scheduled, so it never sits in processing."""

  async def _handle(task: ContinuationTask, exc: Exception) -> None:
    failed = await jobs_repo.fail_job(task.job_id, error_message=CONTINUATION_FAILURE_MESSAGE)
    if failed is not None:
      logger.error("Export job %s failed: continuation at offset=%s could not be scheduled", task.job_id, task.cursor)

  return _handle


def _describe(exc: Exception) -> str:
  return str(exc) or type(exc).__name__
