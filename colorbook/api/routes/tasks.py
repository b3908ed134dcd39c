from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from colorbook.api.deps import SettingsDep, get_export_jobs_repo, get_generation_processor, get_object_storage
from colorbook.api.models import GenerationTaskRequest, StagingSweepResponse
from colorbook.core.security import require_task_secret
from colorbook.jobs.generation_worker import GenerationProcessor
from colorbook.services.maintenance import sweep_export_staging
from colorbook.services.storage_client import ObjectStorage
from colorbook.storage.jobs_repo import ExportJobsRepository

router = APIRouter(dependencies=[Depends(require_task_secret)])
logger = logging.getLogger(__name__)


@router.post("/process-generation-job", status_code=status.HTTP_200_OK)
async def process_generation_job(payload: GenerationTaskRequest, processor: Annotated[GenerationProcessor, Depends(get_generation_processor)]) -> dict[str, Any]:
  """
  Handler for Cloud Tasks (and local simulation).
  Runs exactly one prompt. Job-level failures are recorded on the row and still answer 200,
  so the queue does not redeliver a job that has already stopped.
  """
  logger.info("Received generation task job=%s prompt=%s", payload.job_id, payload.prompt_index)
  outcome = await processor.process(payload.job_id, payload.prompt_index)
  return outcome.to_payload()


@router.post("/sweep-export-staging", response_model=StagingSweepResponse)
async def sweep_staging(
  settings: SettingsDep, storage: Annotated[ObjectStorage, Depends(get_object_storage)], jobs_repo: Annotated[ExportJobsRepository, Depends(get_export_jobs_repo)]
) -> StagingSweepResponse:
  """Remove staged export pages left behind by finished jobs."""
  result = await sweep_export_staging(storage, jobs_repo, staging_prefix=settings.export_staging_prefix, min_age_seconds=settings.staging_sweep_min_age_seconds)
  return StagingSweepResponse(scanned_jobs=result.scanned_jobs, deleted_objects=result.deleted_objects)
