"""Chained batch generation: one prompt per invocation, the next one scheduled after a delay."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from colorbook.ai.prompts import build_coloring_page_prompt
from colorbook.ai.providers import FatalProviderError, GeneratedImage, ImageProvider, get_image_provider
from colorbook.config import Settings
from colorbook.jobs.errors import CONTINUATION_FAILURE_MESSAGE
from colorbook.jobs.models import GenerationJobRecord
from colorbook.notifications.service import NotificationService
from colorbook.services.tasks.dispatch import EnqueueFailureHandler, ScheduleContinuation
from colorbook.services.tasks.interface import ContinuationTask
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.jobs_repo import GenerationJobsRepository

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str], ImageProvider]

GENERATED_ART_STYLE = "line_art"


@dataclass(frozen=True)
class GenerationOutcome:
  """What one generation invocation did."""

  success: bool
  prompt_index: int
  next_prompt_index: int | None = None
  image_generated: bool = False
  job: GenerationJobRecord | None = None
  reason: str | None = None

  def to_payload(self) -> dict[str, Any]:
    payload: dict[str, Any] = {"success": self.success, "promptIndex": self.prompt_index, "nextPromptIndex": self.next_prompt_index, "imageGenerated": self.image_generated}
    if self.reason:
      payload["reason"] = self.reason
    if self.job is not None:
      payload["status"] = self.job.status
    return payload


class GenerationProcessor:
  """Generate the page for one prompt of a batch and chain to the next prompt."""

  def __init__(
    self,
    *,
    jobs_repo: GenerationJobsRepository,
    books_repo: BooksRepository,
    notifications: NotificationService,
    settings: Settings,
    schedule: ScheduleContinuation,
    provider_factory: ProviderFactory | None = None,
  ) -> None:
    self._jobs_repo = jobs_repo
    self._books_repo = books_repo
    self._notifications = notifications
    self._settings = settings
    self._schedule = schedule
    self._provider_factory = provider_factory or (lambda model: get_image_provider(settings, model))

  async def process(self, job_id: str, prompt_index: int) -> GenerationOutcome:
    job = await self._jobs_repo.get_job(job_id)
    if job is None:
      logger.info("Generation job %s not found; ignoring invocation", job_id)
      return GenerationOutcome(success=False, prompt_index=prompt_index, reason="not_found")
    if job.is_terminal:
      logger.debug("Generation job %s already %s; ignoring prompt %s", job_id, job.status, prompt_index)
      return GenerationOutcome(success=False, prompt_index=prompt_index, job=job, reason="terminal")
    if prompt_index != job.processed_count:
      # Duplicate delivery of a prompt that was already counted, or one that arrived early.
      logger.info("Generation job %s prompt %s does not match processed=%s; ignoring", job_id, prompt_index, job.processed_count)
      return GenerationOutcome(success=False, prompt_index=prompt_index, job=job, reason="stale")

    try:
      return await self._run_unit(job, prompt_index)
    except Exception as exc:  # noqa: BLE001
      # A redelivery of this prompt would insert its page twice, so the job stops here.
      logger.error("Generation job %s failed at prompt %s", job_id, prompt_index, exc_info=True)
      return await self._fail(job, prompt_index, f"Generation failed: {_describe(exc)}")

  async def _run_unit(self, job: GenerationJobRecord, prompt_index: int) -> GenerationOutcome:
    job_id = job.job_id
    if job.status == "pending":
      claimed = await self._jobs_repo.mark_processing(job_id)
      if claimed is not None:
        logger.info("Generation job %s processing book=%s prompts=%s", job_id, job.book_id, job.total_count)
        job = claimed

    if prompt_index >= job.total_count:
      return await self._complete(job, prompt_index, image_generated=False)

    try:
      provider = self._provider_factory(job.model)
    except ValueError as exc:
      logger.error("Generation job %s: image provider unavailable: %s", job_id, exc)
      return await self._stop(job, prompt_index, "Image provider is not configured")

    prompt = job.prompts[prompt_index]
    image_generated = False
    try:
      result = await provider.generate(build_coloring_page_prompt(prompt))
      image_generated = await self._store_page(job, prompt, result)
    except FatalProviderError as exc:
      logger.warning("Generation job %s stopped at prompt %s: %s", job_id, prompt_index, exc.message)
      return await self._stop(job, prompt_index, exc.message)
    except Exception as exc:  # noqa: BLE001
      # Transient or content failures only cost this prompt.
      logger.warning("Generation job %s prompt %s failed: %s", job_id, prompt_index, exc)

    updated = await self._jobs_repo.record_unit(job_id, expected_processed=prompt_index, succeeded=image_generated)
    if updated is None:
      logger.info("Generation job %s prompt %s was already counted by another invocation", job_id, prompt_index)
      return GenerationOutcome(success=False, prompt_index=prompt_index, image_generated=image_generated, reason="stale")

    next_index = prompt_index + 1
    logger.info("Generation job %s progress %s/%s (failed=%s)", job_id, updated.processed_count, updated.total_count, updated.failed_count)
    if next_index >= updated.total_count:
      return await self._complete(updated, prompt_index, image_generated=image_generated)

    self._schedule(ContinuationTask(kind="generation", job_id=job_id, cursor=next_index, delay_seconds=self._settings.generation_delay_seconds))
    return GenerationOutcome(success=True, prompt_index=prompt_index, next_prompt_index=next_index, image_generated=image_generated, job=updated)

  async def _store_page(self, job: GenerationJobRecord, prompt: str, result: GeneratedImage) -> bool:
    if not result.usable:
      logger.warning("Generation job %s: provider returned no image", job.job_id)
      return False
    page = await self._books_repo.insert_generated_page(book_id=job.book_id, user_id=job.user_id, prompt=prompt, image_url=result.image_url, art_style=GENERATED_ART_STYLE)
    logger.debug("Generation job %s stored page %s as #%s", job.job_id, page.page_id, page.page_number)
    return True

  async def _complete(self, job: GenerationJobRecord, prompt_index: int, *, image_generated: bool) -> GenerationOutcome:
    completed = await self._jobs_repo.complete_job(job.job_id)
    if completed is None:
      return GenerationOutcome(success=False, prompt_index=prompt_index, image_generated=image_generated, reason="stale")
    logger.info("Generation job %s completed generated=%s failed=%s", job.job_id, completed.completed_count, completed.failed_count)
    await self._notifications.notify_generation_finished(completed)
    return GenerationOutcome(success=True, prompt_index=prompt_index, image_generated=image_generated, job=completed)

  async def _stop(self, job: GenerationJobRecord, prompt_index: int, message: str) -> GenerationOutcome:
    """Fail the job on a batch-stopping error; the current prompt counts as failed, the rest as skipped."""
    counted = await self._jobs_repo.record_unit(job.job_id, expected_processed=prompt_index, succeeded=False)
    base = counted or job
    skipped = max(base.total_count - base.processed_count, 0)
    failed = await self._jobs_repo.fail_job(job.job_id, error_message=message, skipped_count=skipped)
    if failed is not None:
      await self._notifications.notify_generation_finished(failed)
    return GenerationOutcome(success=False, prompt_index=prompt_index, job=failed, reason=message)

  async def _fail(self, job: GenerationJobRecord, prompt_index: int, message: str) -> GenerationOutcome:
    skipped = max(job.total_count - prompt_index, 0)
    try:
      failed = await self._jobs_repo.fail_job(job.job_id, error_message=message, skipped_count=skipped)
    except Exception:  # noqa: BLE001
      logger.error("Generation job %s: could not record failure '%s'", job.job_id, message, exc_info=True)
      failed = None
    if failed is not None:
      await self._notifications.notify_generation_finished(failed)
    return GenerationOutcome(success=False, prompt_index=prompt_index, job=failed, reason=message)


def generation_enqueue_failure_handler(jobs_repo: GenerationJobsRepository, notifications: NotificationService) -> EnqueueFailureHandler:
  """Fail a generation job whose next prompt could not be scheduled."""

  async def _handle(task: ContinuationTask, exc: Exception) -> None:
    job = await jobs_repo.get_job(task.job_id)
    if job is None or job.is_terminal:
      return
    skipped = max(job.total_count - job.processed_count, 0)
    failed = await jobs_repo.fail_job(task.job_id, error_message=CONTINUATION_FAILURE_MESSAGE, skipped_count=skipped)
    if failed is not None:
      logger.error("Generation job %s failed: prompt %s could not be scheduled", task.job_id, task.cursor)
      await notifications.notify_generation_finished(failed)

  return _handle


def _describe(exc: Exception) -> str:
  return str(exc) or type(exc).__name__
