import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials

from colorbook.api.deps import SettingsDep, get_books_repo, get_export_jobs_repo, get_export_processor, get_export_scheduler
from colorbook.api.models import ActiveExportResponse, ExportJobStatusResponse, ExportTriggerRequest
from colorbook.core.security import AuthenticatedUser, get_current_user, is_valid_task_credential, resolve_user, security_scheme
from colorbook.jobs.export_worker import ExportProcessor
from colorbook.services import exports as export_service
from colorbook.services.tasks.dispatch import ScheduleContinuation
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.jobs_repo import ExportJobsRepository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("", status_code=status.HTTP_200_OK)
async def trigger_export(  # noqa: B008
  payload: ExportTriggerRequest,
  settings: SettingsDep,
  credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
  books_repo: Annotated[BooksRepository, Depends(get_books_repo)],
  jobs_repo: Annotated[ExportJobsRepository, Depends(get_export_jobs_repo)],
  schedule: Annotated[ScheduleContinuation, Depends(get_export_scheduler)],
  processor: Annotated[ExportProcessor, Depends(get_export_processor)],
  authorization: str | None = Header(default=None),
  x_colorbook_task_secret: str | None = Header(default=None),
) -> dict[str, Any]:
  """Start or resume an export (end user), or process its next unit (internal continuation)."""
  if payload.is_internal_call:
    # Credentials are checked before anything touches the job row.
    if not is_valid_task_credential(settings, task_secret_header=x_colorbook_task_secret, authorization=authorization):
      logger.warning("Rejected internal export call for job %s", payload.job_id)
      raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
    outcome = await processor.process(payload.job_id, cursor=payload.cursor)
    return outcome.to_payload()

  user = await resolve_user(credentials)
  if payload.book_id:
    created = await export_service.start_export(user, payload.book_id, payload.book_title, books_repo=books_repo, jobs_repo=jobs_repo, schedule=schedule)
    return created.model_dump(by_alias=True, mode="json")

  resumed = await export_service.resume_export(user, payload.job_id, jobs_repo=jobs_repo, schedule=schedule)
  return resumed.model_dump(by_alias=True, mode="json")


@router.get("/active", response_model=ActiveExportResponse)
async def get_active_export(  # noqa: B008
  current_user: Annotated[AuthenticatedUser, Depends(get_current_user)],
  jobs_repo: Annotated[ExportJobsRepository, Depends(get_export_jobs_repo)],
  book_id: str = Query(alias="bookId", min_length=1),
) -> ActiveExportResponse:
  """Return the export currently running for a book, if any."""
  return await export_service.get_active_export(current_user, book_id, jobs_repo=jobs_repo)


@router.get("/{job_id}", response_model=ExportJobStatusResponse)
async def get_export_job(  # noqa: B008
  job_id: str, current_user: Annotated[AuthenticatedUser, Depends(get_current_user)], jobs_repo: Annotated[ExportJobsRepository, Depends(get_export_jobs_repo)]
) -> ExportJobStatusResponse:
  """Fetch the status and archive link of an export job."""
  return await export_service.get_export_job(current_user, job_id, jobs_repo=jobs_repo)
