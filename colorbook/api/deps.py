"""Shared FastAPI dependencies for repositories, collaborators and job processors.

Tests replace any of these through `app.dependency_overrides`.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import BackgroundTasks, Depends, HTTPException, status

from colorbook.ai.providers import AsyncImageProvider, get_image_provider, get_task_provider
from colorbook.config import Settings, get_settings
from colorbook.jobs.export_worker import ExportProcessor, export_enqueue_failure_handler
from colorbook.jobs.generation_worker import GenerationProcessor, ProviderFactory, generation_enqueue_failure_handler
from colorbook.notifications.factory import build_notification_service
from colorbook.notifications.service import NotificationService
from colorbook.services.storage_client import ObjectStorage, build_storage_client
from colorbook.services.tasks.dispatch import BackgroundContinuationScheduler, ScheduleContinuation
from colorbook.services.tasks.factory import get_task_enqueuer
from colorbook.services.tasks.interface import TaskEnqueuer
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.factory import _get_books_repo, _get_export_jobs_repo, _get_generation_jobs_repo
from colorbook.storage.jobs_repo import ExportJobsRepository, GenerationJobsRepository

logger = logging.getLogger(__name__)

SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_books_repo(settings: SettingsDep) -> BooksRepository:
  return _get_books_repo(settings)


def get_export_jobs_repo(settings: SettingsDep) -> ExportJobsRepository:
  return _get_export_jobs_repo(settings)


def get_generation_jobs_repo(settings: SettingsDep) -> GenerationJobsRepository:
  return _get_generation_jobs_repo(settings)


def get_object_storage(settings: SettingsDep) -> ObjectStorage:
  return build_storage_client(settings)


def get_enqueuer(settings: SettingsDep) -> TaskEnqueuer:
  return get_task_enqueuer(settings)


def get_notification_service(settings: SettingsDep) -> NotificationService:
  return build_notification_service(settings)


def get_provider_factory(settings: SettingsDep) -> ProviderFactory:
  """Resolve image providers per request so the model selector is honored."""
  return lambda model: get_image_provider(settings, model)


def get_async_task_provider(settings: SettingsDep) -> AsyncImageProvider:
  try:
    return get_task_provider(settings)
  except ValueError as exc:
    logger.error("Task-based image provider unavailable: %s", exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Image provider is not configured.") from exc


def get_export_scheduler(
  background_tasks: BackgroundTasks, settings: SettingsDep, jobs_repo: Annotated[ExportJobsRepository, Depends(get_export_jobs_repo)], enqueuer: Annotated[TaskEnqueuer, Depends(get_enqueuer)]
) -> ScheduleContinuation:
  """Continuations run after the response is sent; a failed hand-off fails the job."""
  return BackgroundContinuationScheduler(background_tasks, settings, on_failure=export_enqueue_failure_handler(jobs_repo), enqueuer=enqueuer)


def get_generation_scheduler(
  background_tasks: BackgroundTasks,
  settings: SettingsDep,
  jobs_repo: Annotated[GenerationJobsRepository, Depends(get_generation_jobs_repo)],
  notifications: Annotated[NotificationService, Depends(get_notification_service)],
  enqueuer: Annotated[TaskEnqueuer, Depends(get_enqueuer)],
) -> ScheduleContinuation:
  return BackgroundContinuationScheduler(background_tasks, settings, on_failure=generation_enqueue_failure_handler(jobs_repo, notifications), enqueuer=enqueuer)


def get_export_processor(
  settings: SettingsDep,
  jobs_repo: Annotated[ExportJobsRepository, Depends(get_export_jobs_repo)],
  books_repo: Annotated[BooksRepository, Depends(get_books_repo)],
  storage: Annotated[ObjectStorage, Depends(get_object_storage)],
  schedule: Annotated[ScheduleContinuation, Depends(get_export_scheduler)],
) -> ExportProcessor:
  return ExportProcessor(jobs_repo=jobs_repo, books_repo=books_repo, storage=storage, settings=settings, schedule=schedule)


def get_generation_processor(
  settings: SettingsDep,
  jobs_repo: Annotated[GenerationJobsRepository, Depends(get_generation_jobs_repo)],
  books_repo: Annotated[BooksRepository, Depends(get_books_repo)],
  notifications: Annotated[NotificationService, Depends(get_notification_service)],
  schedule: Annotated[ScheduleContinuation, Depends(get_generation_scheduler)],
  provider_factory: Annotated[ProviderFactory, Depends(get_provider_factory)],
) -> GenerationProcessor:
  return GenerationProcessor(jobs_repo=jobs_repo, books_repo=books_repo, notifications=notifications, settings=settings, schedule=schedule, provider_factory=provider_factory)
