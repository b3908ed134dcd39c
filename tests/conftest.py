"""Test configuration: required settings are seeded before the application is imported."""

from __future__ import annotations

import os

os.environ.setdefault("COLORBOOK_ALLOWED_ORIGINS", "http://localhost:5173")
os.environ.setdefault("COLORBOOK_TASK_SECRET", "test-task-secret")
os.environ.setdefault("COLORBOOK_BASE_URL", "http://localhost:8080")
os.environ.setdefault("COLORBOOK_TASK_SERVICE_PROVIDER", "local-http")
os.environ.setdefault("COLORBOOK_EMAIL_NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("COLORBOOK_GENERATION_DELAY_SECONDS", "2")

from dataclasses import replace  # noqa: E402

import pytest  # noqa: E402

from colorbook.config import Settings, get_settings  # noqa: E402
from tests.fakes import InMemoryBooksRepo, InMemoryExportJobsRepo, InMemoryGenerationJobsRepo, InMemoryObjectStorage, RecordingScheduler  # noqa: E402


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def settings() -> Settings:
  return replace(get_settings(), export_staging_prefix="export-staging", export_object_prefix="exports", generation_delay_seconds=2.0, max_prompts_per_job=50)


@pytest.fixture
def books_repo() -> InMemoryBooksRepo:
  return InMemoryBooksRepo()


@pytest.fixture
def export_jobs_repo() -> InMemoryExportJobsRepo:
  return InMemoryExportJobsRepo()


@pytest.fixture
def generation_jobs_repo() -> InMemoryGenerationJobsRepo:
  return InMemoryGenerationJobsRepo()


@pytest.fixture
def storage() -> InMemoryObjectStorage:
  return InMemoryObjectStorage()


@pytest.fixture
def scheduler() -> RecordingScheduler:
  return RecordingScheduler()
