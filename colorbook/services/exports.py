"""Export entry points: start, resume and read export jobs for the job owner.

At most one pending/processing export exists per book. The pre-check returns an active job
directly; the partial unique index turns a race between two near-simultaneous requests into
an `ActiveJobConflictError`, after which the loser attaches to the winner's job.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from colorbook.api.models import ActiveExportResponse, ExportJobCreateResponse, ExportJobStatusResponse
from colorbook.core.security import AuthenticatedUser
from colorbook.jobs.errors import ActiveJobConflictError
from colorbook.jobs.models import ExportJobRecord
from colorbook.services.tasks.dispatch import ScheduleContinuation
from colorbook.services.tasks.interface import ContinuationTask
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.jobs_repo import ExportJobsRepository
from colorbook.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

MAX_CREATE_ATTEMPTS = 3

_JOB_NOT_FOUND_MSG = "Export job not found."


def export_status_from_record(record: ExportJobRecord) -> ExportJobStatusResponse:
  return ExportJobStatusResponse(
    job_id=record.job_id,
    book_id=record.book_id,
    book_title=record.book_title,
    status=record.status,
    total_units=record.total_pages,
    processed_units=record.processed_pages,
    failed_units=record.failed_pages,
    current_offset=record.current_offset,
    download_url=record.download_url,
    error_message=record.error_message,
    created_at=record.created_at,
    updated_at=record.updated_at,
    completed_at=record.completed_at,
  )


def _nudge(record: ExportJobRecord, schedule: ScheduleContinuation) -> None:
  # A duplicate continuation is harmless: the processor ignores cursors that no longer match.
  schedule(ContinuationTask(kind="export", job_id=record.job_id, cursor=record.current_offset))


async def start_export(user: AuthenticatedUser, book_id: str, book_title: str | None, *, books_repo: BooksRepository, jobs_repo: ExportJobsRepository, schedule: ScheduleContinuation) -> ExportJobCreateResponse:
  """Create an export job for a book, or attach to the one already running."""
  book = await books_repo.get_book(book_id)
  if book is None or book.user_id != user.uid:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Book not found.")

  total_pages = await books_repo.count_pages(book_id)
  if total_pages == 0:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No pages to export")

  title = (book_title or "").strip() or book.title
  for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
    active = await jobs_repo.find_active_for_book(book_id)
    if active is not None:
      logger.info("Book %s already has active export %s (%s/%s); resuming", book_id, active.job_id, active.processed_pages, active.total_pages)
      _nudge(active, schedule)
      return ExportJobCreateResponse(job_id=active.job_id, total_units=active.total_pages, resumed=True)

    record = ExportJobRecord(job_id=generate_job_id(), user_id=user.uid, book_id=book_id, book_title=title, status="pending", total_pages=total_pages)
    try:
      created = await jobs_repo.create_job(record)
    except ActiveJobConflictError:
      logger.info("Export for book %s raced with another request (attempt %s/%s)", book_id, attempt, MAX_CREATE_ATTEMPTS)
      continue

    logger.info("Export job %s created for book %s total_pages=%s", created.job_id, book_id, total_pages)
    schedule(ContinuationTask(kind="export", job_id=created.job_id, cursor=0))
    return ExportJobCreateResponse(job_id=created.job_id, total_units=created.total_pages, resumed=False)

  raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Another export for this book is starting; retry shortly.")


async def _get_owned_job(user: AuthenticatedUser, job_id: str, jobs_repo: ExportJobsRepository) -> ExportJobRecord:
  record = await jobs_repo.get_job(job_id)
  # Jobs of other users are reported as missing to avoid leaking identifiers.
  if record is None or record.user_id != user.uid:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_JOB_NOT_FOUND_MSG)
  return record


async def resume_export(user: AuthenticatedUser, job_id: str, *, jobs_repo: ExportJobsRepository, schedule: ScheduleContinuation) -> ExportJobStatusResponse:
  """Re-trigger processing of a non-terminal job from its persisted cursor."""
  record = await _get_owned_job(user, job_id, jobs_repo)
  if not record.is_terminal:
    logger.info("Resuming export job %s at offset=%s", job_id, record.current_offset)
    _nudge(record, schedule)
  return export_status_from_record(record)


async def get_export_job(user: AuthenticatedUser, job_id: str, *, jobs_repo: ExportJobsRepository) -> ExportJobStatusResponse:
  return export_status_from_record(await _get_owned_job(user, job_id, jobs_repo))


async def get_active_export(user: AuthenticatedUser, book_id: str, *, jobs_repo: ExportJobsRepository) -> ActiveExportResponse:
  """Newest pending/processing export for a book owned by the caller."""
  record = await jobs_repo.find_active_for_book(book_id)
  if record is None or record.user_id != user.uid:
    return ActiveExportResponse(job=None)
  return ActiveExportResponse(job=export_status_from_record(record))
