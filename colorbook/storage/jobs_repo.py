"""Storage interfaces for export and generation jobs.

Progress writes are compare-and-set: they name the counter value the caller observed and
return None when another invocation already moved the row. Continuations are delivered
at least once, so this is what keeps a duplicate delivery from advancing a job twice.
"""

from __future__ import annotations

from typing import Protocol

from colorbook.jobs.models import ExportJobRecord, GenerationJobRecord


class ExportJobsRepository(Protocol):
  """Repository contract for export job persistence."""

  async def create_job(self, record: ExportJobRecord) -> ExportJobRecord:
    """Persist a new job; raise ActiveJobConflictError if the book already has an active one."""

  async def get_job(self, job_id: str) -> ExportJobRecord | None:
    """Fetch a job by identifier."""

  async def find_active_for_book(self, book_id: str) -> ExportJobRecord | None:
    """Return the newest pending/processing job for a book."""

  async def mark_processing(self, job_id: str) -> ExportJobRecord | None:
    """Flip pending to processing; return None when the job was not pending."""

  async def advance(self, job_id: str, *, expected_offset: int, unit_failed: bool = False) -> ExportJobRecord | None:
    """Advance processed_pages and current_offset by one when the offset still matches."""

  async def complete_job(self, job_id: str, *, download_url: str) -> ExportJobRecord | None:
    """Mark a processing job completed with its archive reference."""

  async def fail_job(self, job_id: str, *, error_message: str) -> ExportJobRecord | None:
    """Mark a non-terminal job failed; return None when it was already terminal."""


class GenerationJobsRepository(Protocol):
  """Repository contract for generation job persistence."""

  async def create_job(self, record: GenerationJobRecord) -> GenerationJobRecord:
    """Persist a new pending job."""

  async def get_job(self, job_id: str) -> GenerationJobRecord | None:
    """Fetch a job by identifier."""

  async def list_jobs_for_user(self, user_id: str, *, limit: int = 50) -> list[GenerationJobRecord]:
    """Return a user's jobs, newest first."""

  async def delete_job(self, job_id: str) -> bool:
    """Delete a job row; return False when it did not exist."""

  async def mark_processing(self, job_id: str) -> GenerationJobRecord | None:
    """Flip pending to processing; return None when the job was not pending."""

  async def record_unit(self, job_id: str, *, expected_processed: int, succeeded: bool) -> GenerationJobRecord | None:
    """Count one prompt as completed or failed when the processed count still matches."""

  async def complete_job(self, job_id: str) -> GenerationJobRecord | None:
    """Mark a processing job completed."""

  async def fail_job(self, job_id: str, *, error_message: str, skipped_count: int = 0) -> GenerationJobRecord | None:
    """Mark a non-terminal job failed, recording prompts that will never run."""
