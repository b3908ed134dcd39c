"""Maintenance services for scheduled background cleanup tasks."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from colorbook.services.storage_client import ObjectStorage
from colorbook.storage.jobs_repo import ExportJobsRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
  scanned_jobs: int
  deleted_objects: int


async def sweep_export_staging(storage: ObjectStorage, jobs_repo: ExportJobsRepository, *, staging_prefix: str, min_age_seconds: int, now: datetime | None = None) -> SweepResult:
  """Delete staged export pages left behind by finished or unknown jobs.

  How/Why:
    - Finalize removes its staged pages on a best-effort basis, so a failed delete or a job that
      failed mid-chain leaves objects under `{staging_prefix}/{job_id}/`.
    - Staged pages of active jobs are never touched. Terminal jobs are only swept once they
      have been finished for `min_age_seconds`, which keeps the sweep out of a finalize that
      is still cleaning up after itself.
  """
  current_time = now or datetime.now(UTC)
  cutoff = current_time - timedelta(seconds=min_age_seconds)
  root = f"{staging_prefix.rstrip('/')}/"

  keys_by_job: dict[str, list[str]] = defaultdict(list)
  for key in await storage.list_keys(root):
    job_id = key[len(root) :].split("/", 1)[0]
    if job_id:
      keys_by_job[job_id].append(key)

  deleted = 0
  for job_id, keys in keys_by_job.items():
    job = await jobs_repo.get_job(job_id)
    if job is not None:
      if not job.is_terminal:
        continue
      finished_at = job.completed_at or job.updated_at
      if finished_at is not None and finished_at > cutoff:
        continue

    removed = 0
    for key in keys:
      try:
        await storage.delete(key)
        removed += 1
      except Exception as exc:  # noqa: BLE001
        logger.warning("Staging sweep failed to delete %s: %s", key, exc)
    deleted += removed
    logger.info("Staging sweep removed %s/%s objects for export job %s (%s)", removed, len(keys), job_id, job.status if job else "unknown job")

  return SweepResult(scanned_jobs=len(keys_by_job), deleted_objects=deleted)
