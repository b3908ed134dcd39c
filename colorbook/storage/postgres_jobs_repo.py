"""Postgres-backed repositories for export and generation jobs using SQLAlchemy."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from colorbook.core.database import get_session_factory
from colorbook.jobs.errors import ActiveJobConflictError
from colorbook.jobs.models import ACTIVE_STATUSES, ExportJobRecord, GenerationJobRecord
from colorbook.schema.jobs import ExportJob, GenerationJob
from colorbook.storage.jobs_repo import ExportJobsRepository, GenerationJobsRepository

_ACTIVE_EXPORT_INDEX = "ux_export_jobs_active_book"


def _now() -> datetime:
  return datetime.now(UTC)


def _export_to_record(row: ExportJob) -> ExportJobRecord:
  return ExportJobRecord(
    job_id=row.id,
    user_id=row.user_id,
    book_id=row.book_id,
    book_title=row.book_title,
    status=row.status,  # type: ignore[arg-type]
    total_pages=row.total_pages,
    processed_pages=row.processed_pages,
    current_offset=row.current_offset,
    failed_pages=row.failed_pages,
    download_url=row.download_url,
    error_message=row.error_message,
    created_at=row.created_at,
    updated_at=row.updated_at,
    completed_at=row.completed_at,
  )


def _generation_to_record(row: GenerationJob) -> GenerationJobRecord:
  return GenerationJobRecord(
    job_id=row.id,
    user_id=row.user_id,
    book_id=row.book_id,
    status=row.status,  # type: ignore[arg-type]
    prompts=[str(prompt) for prompt in row.prompts or []],
    completed_count=row.completed_count,
    failed_count=row.failed_count,
    skipped_count=row.skipped_count,
    model=row.model,
    border=row.border,
    add_bleed=row.add_bleed,
    notify_email=row.notify_email,
    error_message=row.error_message,
    created_at=row.created_at,
    updated_at=row.updated_at,
    completed_at=row.completed_at,
  )


class PostgresExportJobsRepository(ExportJobsRepository):
  """Persist export jobs to Postgres."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: ExportJobRecord) -> ExportJobRecord:
    now = _now()
    row = ExportJob(
      id=record.job_id,
      user_id=record.user_id,
      book_id=record.book_id,
      book_title=record.book_title,
      status=record.status,
      total_pages=record.total_pages,
      processed_pages=record.processed_pages,
      current_offset=record.current_offset,
      failed_pages=record.failed_pages,
      created_at=record.created_at or now,
      updated_at=record.updated_at or now,
    )
    async with self._session_factory() as session:
      session.add(row)
      try:
        await session.commit()
      except IntegrityError as exc:
        await session.rollback()
        # Only the partial unique index means "someone else is already exporting this book".
        if _ACTIVE_EXPORT_INDEX in str(exc.orig):
          raise ActiveJobConflictError(record.book_id) from exc
        raise
      return _export_to_record(row)

  async def get_job(self, job_id: str) -> ExportJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(ExportJob, job_id)
      return _export_to_record(row) if row is not None else None

  async def find_active_for_book(self, book_id: str) -> ExportJobRecord | None:
    async with self._session_factory() as session:
      stmt = select(ExportJob).where(ExportJob.book_id == book_id, ExportJob.status.in_(ACTIVE_STATUSES)).order_by(ExportJob.created_at.desc()).limit(1)
      row = (await session.execute(stmt)).scalar_one_or_none()
      return _export_to_record(row) if row is not None else None

  async def mark_processing(self, job_id: str) -> ExportJobRecord | None:
    return await self._update_where(job_id, [ExportJob.status == "pending"], {"status": "processing"})

  async def advance(self, job_id: str, *, expected_offset: int, unit_failed: bool = False) -> ExportJobRecord | None:
    values: dict[str, Any] = {"processed_pages": ExportJob.processed_pages + 1, "current_offset": ExportJob.current_offset + 1}
    if unit_failed:
      values["failed_pages"] = ExportJob.failed_pages + 1
    criteria = [ExportJob.status == "processing", ExportJob.current_offset == expected_offset, ExportJob.processed_pages < ExportJob.total_pages]
    return await self._update_where(job_id, criteria, values)

  async def complete_job(self, job_id: str, *, download_url: str) -> ExportJobRecord | None:
    values = {"status": "completed", "download_url": download_url, "error_message": None, "completed_at": _now()}
    return await self._update_where(job_id, [ExportJob.status == "processing"], values)

  async def fail_job(self, job_id: str, *, error_message: str) -> ExportJobRecord | None:
    values = {"status": "failed", "error_message": error_message, "download_url": None, "completed_at": _now()}
    return await self._update_where(job_id, [ExportJob.status.in_(ACTIVE_STATUSES)], values)

  async def _update_where(self, job_id: str, criteria: list[Any], values: dict[str, Any]) -> ExportJobRecord | None:
    stmt = update(ExportJob).where(ExportJob.id == job_id, *criteria).values(**values, updated_at=_now()).returning(ExportJob).execution_options(synchronize_session=False)
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return _export_to_record(row) if row is not None else None


class PostgresGenerationJobsRepository(GenerationJobsRepository):
  """Persist generation jobs to Postgres."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_job(self, record: GenerationJobRecord) -> GenerationJobRecord:
    now = _now()
    row = GenerationJob(
      id=record.job_id,
      user_id=record.user_id,
      book_id=record.book_id,
      status=record.status,
      prompts=list(record.prompts),
      total_count=record.total_count,
      completed_count=record.completed_count,
      failed_count=record.failed_count,
      skipped_count=record.skipped_count,
      model=record.model,
      border=record.border,
      add_bleed=record.add_bleed,
      notify_email=record.notify_email,
      created_at=record.created_at or now,
      updated_at=record.updated_at or now,
    )
    async with self._session_factory() as session:
      session.add(row)
      await session.commit()
      return _generation_to_record(row)

  async def get_job(self, job_id: str) -> GenerationJobRecord | None:
    async with self._session_factory() as session:
      row = await session.get(GenerationJob, job_id)
      return _generation_to_record(row) if row is not None else None

  async def list_jobs_for_user(self, user_id: str, *, limit: int = 50) -> list[GenerationJobRecord]:
    async with self._session_factory() as session:
      stmt = select(GenerationJob).where(GenerationJob.user_id == user_id).order_by(GenerationJob.created_at.desc()).limit(limit)
      rows = (await session.execute(stmt)).scalars().all()
      return [_generation_to_record(row) for row in rows]

  async def delete_job(self, job_id: str) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(GenerationJob).where(GenerationJob.id == job_id))
      await session.commit()
      return bool(result.rowcount)

  async def mark_processing(self, job_id: str) -> GenerationJobRecord | None:
    return await self._update_where(job_id, [GenerationJob.status == "pending"], {"status": "processing"})

  async def record_unit(self, job_id: str, *, expected_processed: int, succeeded: bool) -> GenerationJobRecord | None:
    counter = "completed_count" if succeeded else "failed_count"
    values = {counter: getattr(GenerationJob, counter) + 1}
    criteria = [GenerationJob.status == "processing", GenerationJob.completed_count + GenerationJob.failed_count == expected_processed]
    return await self._update_where(job_id, criteria, values)

  async def complete_job(self, job_id: str) -> GenerationJobRecord | None:
    return await self._update_where(job_id, [GenerationJob.status == "processing"], {"status": "completed", "completed_at": _now()})

  async def fail_job(self, job_id: str, *, error_message: str, skipped_count: int = 0) -> GenerationJobRecord | None:
    values = {"status": "failed", "error_message": error_message, "skipped_count": skipped_count, "completed_at": _now()}
    return await self._update_where(job_id, [GenerationJob.status.in_(ACTIVE_STATUSES)], values)

  async def _update_where(self, job_id: str, criteria: list[Any], values: dict[str, Any]) -> GenerationJobRecord | None:
    stmt = update(GenerationJob).where(GenerationJob.id == job_id, *criteria).values(**values, updated_at=_now()).returning(GenerationJob).execution_options(synchronize_session=False)
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).scalar_one_or_none()
      await session.commit()
      return _generation_to_record(row) if row is not None else None
