"""Batch generation entry points for the job owner."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from colorbook.api.models import GenerationJobCreateRequest, GenerationJobListResponse, GenerationJobResponse
from colorbook.config import Settings
from colorbook.core.security import AuthenticatedUser
from colorbook.jobs.models import GenerationJobRecord
from colorbook.services.tasks.dispatch import ScheduleContinuation
from colorbook.services.tasks.interface import ContinuationTask
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.jobs_repo import GenerationJobsRepository
from colorbook.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

_JOB_NOT_FOUND_MSG = "Generation job not found."


def generation_status_from_record(record: GenerationJobRecord) -> GenerationJobResponse:
  return GenerationJobResponse(
    job_id=record.job_id,
    book_id=record.book_id,
    status=record.status,
    total_count=record.total_count,
    completed_count=record.completed_count,
    failed_count=record.failed_count,
    skipped_count=record.skipped_count,
    model=record.model,
    border=record.border,
    add_bleed=record.add_bleed,
    error_message=record.error_message,
    created_at=record.created_at,
    updated_at=record.updated_at,
    completed_at=record.completed_at,
  )


async def create_generation_job(
  user: AuthenticatedUser, request: GenerationJobCreateRequest, settings: Settings, *, books_repo: BooksRepository, jobs_repo: GenerationJobsRepository, schedule: ScheduleContinuation
) -> GenerationJobResponse:
  """Persist a pending batch and schedule its first prompt."""
  if len(request.prompts) > settings.max_prompts_per_job:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"A batch may contain at most {settings.max_prompts_per_job} prompts.")

  book = await books_repo.get_book(request.book_id)
  if book is None or book.user_id != user.uid:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found.")

  record = GenerationJobRecord(
    job_id=generate_job_id(),
    user_id=user.uid,
    book_id=request.book_id,
    status="pending",
    prompts=list(request.prompts),
    model=request.model or settings.image_gateway_model,
    border=request.border,
    add_bleed=request.add_bleed,
    notify_email=request.notify_email,
  )
  created = await jobs_repo.create_job(record)
  logger.info("Generation job %s created for book %s prompts=%s model=%s", created.job_id, created.book_id, created.total_count, created.model)
  # The first prompt runs right away; only later prompts are throttled.
  schedule(ContinuationTask(kind="generation", job_id=created.job_id, cursor=0))
  return generation_status_from_record(created)


async def _get_owned_job(user: AuthenticatedUser, job_id: str, jobs_repo: GenerationJobsRepository) -> GenerationJobRecord:
  record = await jobs_repo.get_job(job_id)
  if record is None or record.user_id != user.uid:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  return record


async def get_generation_job(user: AuthenticatedUser, job_id: str, *, jobs_repo: GenerationJobsRepository) -> GenerationJobResponse:
  return generation_status_from_record(await _get_owned_job(user, job_id, jobs_repo))


async def list_generation_jobs(user: AuthenticatedUser, *, jobs_repo: GenerationJobsRepository, limit: int = 50) -> GenerationJobListResponse:
  records = await jobs_repo.list_jobs_for_user(user.uid, limit=limit)
  return GenerationJobListResponse(jobs=[generation_status_from_record(record) for record in records])


async def delete_generation_job(user: AuthenticatedUser, job_id: str, *, jobs_repo: GenerationJobsRepository) -> None:
  """Remove a finished job from the caller's history."""
  record = await _get_owned_job(user, job_id, jobs_repo)
  if not record.is_terminal:
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Only completed or failed jobs can be deleted.")
  if not await jobs_repo.delete_job(job_id):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  logger.info("Generation job %s deleted", job_id)
