import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Response, status

from colorbook.api.deps import SettingsDep, get_books_repo, get_generation_jobs_repo, get_generation_scheduler
from colorbook.api.models import GenerationJobCreateRequest, GenerationJobListResponse, GenerationJobResponse
from colorbook.core.security import AuthenticatedUser, get_current_user
from colorbook.services import generation as generation_service
from colorbook.services.tasks.dispatch import ScheduleContinuation
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.jobs_repo import GenerationJobsRepository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", response_model=GenerationJobResponse, status_code=status.HTTP_201_CREATED)
async def create_generation_job(  # noqa: B008
  request: GenerationJobCreateRequest,
  settings: SettingsDep,
  current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
  books_repo: Annotated[BooksRepository, Depends(get_books_repo)],
  jobs_repo: Annotated[GenerationJobsRepository, Depends(get_generation_jobs_repo)],
  schedule: Annotated[ScheduleContinuation, Depends(get_generation_scheduler)],
) -> GenerationJobResponse:
  """Create a background batch that generates one page per prompt."""
  return await generation_service.create_generation_job(current_user, request, settings, books_repo=books_repo, jobs_repo=jobs_repo, schedule=schedule)


@router.get("", response_model=GenerationJobListResponse)
async def list_generation_jobs(  # noqa: B008
  current_user: Annotated[AuthenticatedUser, Depends(get_current_user)], jobs_repo: Annotated[GenerationJobsRepository, Depends(get_generation_jobs_repo)]
) -> GenerationJobListResponse:
  return await generation_service.list_generation_jobs(current_user, jobs_repo=jobs_repo)


@router.get("/{job_id}", response_model=GenerationJobResponse)
async def get_generation_job(  # noqa: B008
  job_id: str, current_user: Annotated[AuthenticatedUser, Depends(get_current_user)], jobs_repo: Annotated[GenerationJobsRepository, Depends(get_generation_jobs_repo)]
) -> GenerationJobResponse:
  """Fetch live counters for a generation job."""
  return await generation_service.get_generation_job(current_user, job_id, jobs_repo=jobs_repo)


@router.delete("/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_generation_job(  # noqa: B008
  job_id: str, current_user: Annotated[AuthenticatedUser, Depends(get_current_user)], jobs_repo: Annotated[GenerationJobsRepository, Depends(get_generation_jobs_repo)]
) -> Response:
  await generation_service.delete_generation_job(current_user, job_id, jobs_repo=jobs_repo)
  return Response(status_code=status.HTTP_204_NO_CONTENT)
