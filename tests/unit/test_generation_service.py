from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from colorbook.api.models import GenerationJobCreateRequest
from colorbook.core.security import AuthenticatedUser
from colorbook.services import generation

OWNER = AuthenticatedUser(uid="user-1")


def test_create_request_trims_prompts_and_accepts_camel_case():
  request = GenerationJobCreateRequest.model_validate({"bookId": "book-1", "prompts": ["  a fox ", "", "an owl"], "addBleed": True, "notifyEmail": " me@example.com "})

  assert request.prompts == ["a fox", "an owl"]
  assert request.add_bleed is True
  assert request.notify_email == "me@example.com"


@pytest.mark.parametrize(
  "payload",
  [
    {"bookId": "book-1", "prompts": []},
    {"bookId": "book-1", "prompts": ["   "]},
    {"bookId": "book-1", "prompts": ["a"], "notifyEmail": "not-an-email"},
    {"bookId": "book-1", "prompts": ["a"], "unexpected": 1},
  ],
)
def test_create_request_rejects_invalid_payloads(payload):
  with pytest.raises(ValidationError):
    GenerationJobCreateRequest.model_validate(payload)


@pytest.mark.anyio
async def test_create_persists_pending_job_and_schedules_first_prompt(settings, books_repo, generation_jobs_repo, scheduler):
  books_repo.add_book("book-1")
  request = GenerationJobCreateRequest(book_id="book-1", prompts=["a", "b"])

  response = await generation.create_generation_job(OWNER, request, settings, books_repo=books_repo, jobs_repo=generation_jobs_repo, schedule=scheduler)

  assert response.status == "pending"
  assert response.total_count == 2
  assert response.model == settings.image_gateway_model
  task = scheduler.pop()
  assert (task.kind, task.job_id, task.cursor, task.delay_seconds) == ("generation", response.job_id, 0, 0.0)


@pytest.mark.anyio
async def test_create_rejects_oversized_batches(settings, books_repo, generation_jobs_repo, scheduler):
  books_repo.add_book("book-1")
  request = GenerationJobCreateRequest(book_id="book-1", prompts=["a", "b", "c"])

  with pytest.raises(HTTPException) as exc_info:
    await generation.create_generation_job(OWNER, request, replace(settings, max_prompts_per_job=2), books_repo=books_repo, jobs_repo=generation_jobs_repo, schedule=scheduler)

  assert exc_info.value.status_code == 400
  assert generation_jobs_repo.jobs == {}


@pytest.mark.anyio
async def test_create_requires_owned_book(settings, books_repo, generation_jobs_repo, scheduler):
  books_repo.add_book("book-1", user_id="someone-else")
  request = GenerationJobCreateRequest(book_id="book-1", prompts=["a"])

  with pytest.raises(HTTPException) as exc_info:
    await generation.create_generation_job(OWNER, request, settings, books_repo=books_repo, jobs_repo=generation_jobs_repo, schedule=scheduler)

  assert exc_info.value.status_code == 404


@pytest.mark.anyio
async def test_only_finished_jobs_can_be_deleted(settings, books_repo, generation_jobs_repo, scheduler):
  books_repo.add_book("book-1")
  created = await generation.create_generation_job(
    OWNER, GenerationJobCreateRequest(book_id="book-1", prompts=["a"]), settings, books_repo=books_repo, jobs_repo=generation_jobs_repo, schedule=scheduler
  )

  with pytest.raises(HTTPException) as exc_info:
    await generation.delete_generation_job(OWNER, created.job_id, jobs_repo=generation_jobs_repo)
  assert exc_info.value.status_code == 409

  await generation_jobs_repo.fail_job(created.job_id, error_message="stopped")
  await generation.delete_generation_job(OWNER, created.job_id, jobs_repo=generation_jobs_repo)

  listed = await generation.list_generation_jobs(OWNER, jobs_repo=generation_jobs_repo)
  assert listed.jobs == []
