"""Chained batch generation: one prompt per invocation with a delay between prompts."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from colorbook.ai.providers.base import FatalProviderError, GeneratedImage, ImageProviderError
from colorbook.jobs.errors import CONTINUATION_FAILURE_MESSAGE
from colorbook.jobs.generation_worker import GenerationProcessor, generation_enqueue_failure_handler
from colorbook.jobs.models import GenerationJobRecord
from colorbook.services.tasks.interface import ContinuationTask
from tests.fakes import StubImageProvider, png_data_url


@pytest.fixture
def notifications():
  service = MagicMock()
  service.notify_generation_finished = AsyncMock(return_value=True)
  return service


def _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider) -> GenerationProcessor:
  return GenerationProcessor(
    jobs_repo=generation_jobs_repo, books_repo=books_repo, notifications=notifications, settings=settings, schedule=scheduler, provider_factory=lambda model: provider
  )


async def _create_job(generation_jobs_repo, prompts: list[str], *, notify_email: str | None = None) -> GenerationJobRecord:
  record = GenerationJobRecord(job_id="gen-1", user_id="user-1", book_id="book-1", status="pending", prompts=prompts, notify_email=notify_email)
  return await generation_jobs_repo.create_job(record)


async def _run_chain(processor: GenerationProcessor, scheduler, *, limit: int = 50) -> list:
  outcomes = [await processor.process("gen-1", 0)]
  for _ in range(limit):
    if not scheduler.tasks:
      break
    task = scheduler.pop()
    outcomes.append(await processor.process(task.job_id, task.cursor))
  return outcomes


def _ok(name: str) -> GeneratedImage:
  return GeneratedImage(image_url=png_data_url(name.encode()))


@pytest.mark.anyio
async def test_pages_are_appended_after_existing_pages(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  books_repo.add_page("book-1")
  provider = StubImageProvider([_ok("a"), _ok("b"), _ok("c")])
  await _create_job(generation_jobs_repo, ["a fox", "an owl", "a bear"])

  await _run_chain(_processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider), scheduler)

  pages = books_repo.pages_for("book-1")
  assert [page.page_number for page in pages] == [1, 2, 3, 4, 5]
  assert [page.prompt for page in pages[2:]] == ["a fox", "an owl", "a bear"]
  assert all(page.art_style == "line_art" for page in pages[2:])
  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "completed"
  assert job.completed_count == 3
  assert job.failed_count == 0


@pytest.mark.anyio
async def test_prompts_are_wrapped_with_line_art_directives(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a")])
  await _create_job(generation_jobs_repo, ["  a   fox  "])

  await _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider).process("gen-1", 0)

  assert "coloring page illustration for adults of: a fox." in provider.prompts[0]


@pytest.mark.anyio
async def test_one_failed_prompt_does_not_stop_the_batch(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a"), ImageProviderError("Provider request failed with status 500"), _ok("c")])
  await _create_job(generation_jobs_repo, ["a", "b", "c"])

  outcomes = await _run_chain(_processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider), scheduler)

  assert [outcome.image_generated for outcome in outcomes] == [True, False, True]
  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "completed"
  assert job.completed_count == 2
  assert job.failed_count == 1
  assert [page.prompt for page in books_repo.pages_for("book-1")] == ["a", "c"]


@pytest.mark.anyio
async def test_empty_provider_result_counts_as_failed_prompt(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([GeneratedImage(image_url=None, text="I cannot draw that")])
  await _create_job(generation_jobs_repo, ["a"])

  outcome = await _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider).process("gen-1", 0)

  assert outcome.success is True
  assert outcome.image_generated is False
  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "completed"
  assert job.failed_count == 1
  assert books_repo.pages_for("book-1") == []


@pytest.mark.anyio
async def test_rate_limit_stops_the_chain_and_skips_the_rest(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a"), FatalProviderError("Rate limit exceeded", reason="rate_limit", status_code=429)])
  await _create_job(generation_jobs_repo, ["a", "b", "c", "d"], notify_email="artist@example.com")

  outcomes = await _run_chain(_processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider), scheduler)

  assert outcomes[-1].success is False
  assert outcomes[-1].reason == "Rate limit exceeded"
  assert scheduler.tasks == []
  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "failed"
  assert job.error_message == "Rate limit exceeded"
  assert job.completed_count == 1
  assert job.failed_count == 1
  assert job.skipped_count == 2
  notifications.notify_generation_finished.assert_awaited_once()
  assert notifications.notify_generation_finished.await_args.args[0].status == "failed"


@pytest.mark.anyio
async def test_unconfigured_provider_stops_the_job(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  await _create_job(generation_jobs_repo, ["a", "b"])

  def _factory(model: str):
    raise ValueError("COLORBOOK_IMAGE_GATEWAY_API_KEY is not set")

  processor = GenerationProcessor(jobs_repo=generation_jobs_repo, books_repo=books_repo, notifications=notifications, settings=settings, schedule=scheduler, provider_factory=_factory)
  outcome = await processor.process("gen-1", 0)

  assert outcome.reason == "Image provider is not configured"
  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "failed"
  assert job.failed_count == 1
  assert job.skipped_count == 1


@pytest.mark.anyio
async def test_duplicate_prompt_index_is_ignored(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a"), _ok("b")])
  await _create_job(generation_jobs_repo, ["a", "b", "c"])
  processor = _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider)

  await processor.process("gen-1", 0)
  duplicate = await processor.process("gen-1", 0)

  assert duplicate.success is False
  assert duplicate.reason == "stale"
  assert len(provider.prompts) == 1
  assert len(books_repo.pages_for("book-1")) == 1
  assert generation_jobs_repo.jobs["gen-1"].processed_count == 1


@pytest.mark.anyio
async def test_next_prompt_is_scheduled_with_configured_delay(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a")])
  await _create_job(generation_jobs_repo, ["a", "b"])

  outcome = await _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider).process("gen-1", 0)

  assert outcome.next_prompt_index == 1
  assert outcome.to_payload() == {"success": True, "promptIndex": 0, "nextPromptIndex": 1, "imageGenerated": True, "status": "processing"}
  assert scheduler.tasks == [ContinuationTask(kind="generation", job_id="gen-1", cursor=1, delay_seconds=2.0)]


@pytest.mark.anyio
async def test_terminal_job_ignores_late_delivery(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a")])
  await _create_job(generation_jobs_repo, ["a"])
  processor = _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider)
  await processor.process("gen-1", 0)

  late = await processor.process("gen-1", 1)

  assert late.reason == "terminal"
  assert notifications.notify_generation_finished.await_count == 1


@pytest.mark.anyio
async def test_completion_notifies_once(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a"), _ok("b")])
  await _create_job(generation_jobs_repo, ["a", "b"], notify_email="artist@example.com")

  await _run_chain(_processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider), scheduler)

  notifications.notify_generation_finished.assert_awaited_once()
  notified = notifications.notify_generation_finished.await_args.args[0]
  assert notified.status == "completed"
  assert notified.completed_count == 2


@pytest.mark.anyio
async def test_missing_job_returns_not_found(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  outcome = await _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, StubImageProvider([])).process("nope", 0)

  assert outcome.reason == "not_found"
  assert outcome.success is False


@pytest.mark.anyio
async def test_enqueue_failure_handler_fails_and_notifies(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a")])
  await _create_job(generation_jobs_repo, ["a", "b", "c"])
  await _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider).process("gen-1", 0)
  handler = generation_enqueue_failure_handler(generation_jobs_repo, notifications)

  await handler(scheduler.pop(), RuntimeError("queue unavailable"))

  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "failed"
  assert job.error_message == CONTINUATION_FAILURE_MESSAGE
  assert job.skipped_count == 2
  notifications.notify_generation_finished.assert_awaited_once()


@pytest.mark.anyio
async def test_empty_result_for_middle_prompt_fails_only_that_prompt(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a"), GeneratedImage(image_url=None), _ok("c")])
  await _create_job(generation_jobs_repo, ["a", "b", "c"])

  await _run_chain(_processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider), scheduler)

  job = generation_jobs_repo.jobs["gen-1"]
  assert (job.status, job.completed_count, job.failed_count) == ("completed", 2, 1)
  assert len(books_repo.pages_for("book-1")) == 2


@pytest.mark.anyio
async def test_quota_on_first_prompt_fails_immediately(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([FatalProviderError("Usage limit reached", reason="quota", status_code=402), _ok("b")])
  await _create_job(generation_jobs_repo, ["a", "b"])

  await _run_chain(_processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider), scheduler)

  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "failed"
  assert job.error_message == "Usage limit reached"
  assert (job.completed_count, job.failed_count, job.skipped_count) == (0, 1, 1)
  assert len(provider.prompts) == 1


@pytest.mark.anyio
async def test_bookkeeping_failure_fails_the_job_instead_of_leaving_it_processing(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a"), _ok("b")])
  await _create_job(generation_jobs_repo, ["a fox", "an owl", "a bear"])
  generation_jobs_repo.record_unit = AsyncMock(side_effect=RuntimeError("connection reset"))
  processor = _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider)

  outcome = await processor.process("gen-1", 0)

  assert outcome.success is False
  assert outcome.reason == "Generation failed: connection reset"
  job = generation_jobs_repo.jobs["gen-1"]
  assert job.status == "failed"
  assert job.error_message == "Generation failed: connection reset"
  assert job.skipped_count == 3
  assert scheduler.tasks == []
  notifications.notify_generation_finished.assert_awaited_once()

  # A redelivery of the same prompt must not generate a second page.
  again = await processor.process("gen-1", 0)
  assert again.reason == "terminal"
  assert len(books_repo.pages_for("book-1")) == 1
  assert len(provider.prompts) == 1


@pytest.mark.anyio
async def test_failed_claim_is_recorded_as_a_failed_job(settings, generation_jobs_repo, books_repo, notifications, scheduler):
  books_repo.add_book("book-1")
  provider = StubImageProvider([_ok("a")])
  await _create_job(generation_jobs_repo, ["a fox"])
  generation_jobs_repo.mark_processing = AsyncMock(side_effect=RuntimeError("pool exhausted"))

  outcome = await _processor(settings, generation_jobs_repo, books_repo, notifications, scheduler, provider).process("gen-1", 0)

  assert outcome.job.status == "failed"
  assert outcome.job.error_message == "Generation failed: pool exhausted"
  assert provider.prompts == []
