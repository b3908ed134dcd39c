"""Chained export: one page per invocation, finalize once the cursor reaches the total."""

from __future__ import annotations

import io
import logging

import pytest
import pyzipper

from colorbook.jobs.errors import CONTINUATION_FAILURE_MESSAGE
from colorbook.jobs.export_worker import ExportProcessor, export_enqueue_failure_handler
from colorbook.jobs.models import ExportJobRecord
from colorbook.services.tasks.interface import ContinuationTask
from tests.fakes import png_data_url


def _processor(settings, export_jobs_repo, books_repo, storage, scheduler) -> ExportProcessor:
  return ExportProcessor(jobs_repo=export_jobs_repo, books_repo=books_repo, storage=storage, settings=settings, schedule=scheduler, clock=lambda: 1700000000.0)


async def _create_job(export_jobs_repo, books_repo, *, book_id: str = "book-1", title: str = "My Book", job_id: str = "job-1") -> ExportJobRecord:
  total = await books_repo.count_pages(book_id)
  record = ExportJobRecord(job_id=job_id, user_id="user-1", book_id=book_id, book_title=title, status="pending", total_pages=total)
  return await export_jobs_repo.create_job(record)


async def _drain(processor: ExportProcessor, scheduler, *, limit: int = 50) -> list[str]:
  """Deliver scheduled continuations until the chain stops."""
  actions = []
  for _ in range(limit):
    if not scheduler.tasks:
      break
    task = scheduler.pop()
    outcome = await processor.process(task.job_id, cursor=task.cursor)
    actions.append(outcome.action)
  return actions


def _archive_names(data: bytes) -> list[str]:
  with pyzipper.ZipFile(io.BytesIO(data)) as archive:
    return sorted(archive.namelist())


@pytest.mark.anyio
async def test_three_page_book_exports_in_four_invocations(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1", title="My Book")
  pages = [books_repo.add_page("book-1") for _ in range(3)]
  await _create_job(export_jobs_repo, books_repo)
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  first = await processor.process("job-1", cursor=0)
  assert first.action == "staged"
  assert first.job.processed_pages == 1
  assert scheduler.tasks == [ContinuationTask(kind="export", job_id="job-1", cursor=1)]

  actions = await _drain(processor, scheduler)
  assert actions == ["staged", "staged", "finalized"]

  job = export_jobs_repo.jobs["job-1"]
  assert job.status == "completed"
  assert job.processed_pages == job.total_pages == 3
  assert job.failed_pages == 0
  assert job.download_url == "memory://bucket/exports/user-1/My_Book_1700000000000.zip"

  archive_bytes = storage.objects["exports/user-1/My_Book_1700000000000.zip"][0]
  names = _archive_names(archive_bytes)
  assert names == [f"My_Book/{position:04d}_{page.page_id[:8]}.png" for position, page in enumerate(pages, start=1)]
  # Staging is cleaned up once the job completes.
  assert not [key for key in storage.objects if key.startswith("export-staging/")]


@pytest.mark.anyio
async def test_terminal_job_is_a_noop(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)
  await processor.process("job-1", cursor=0)
  await _drain(processor, scheduler)
  completed = export_jobs_repo.jobs["job-1"]

  outcome = await processor.process("job-1", cursor=1)

  assert outcome.action == "noop"
  assert outcome.success is False
  assert export_jobs_repo.jobs["job-1"] == completed
  assert scheduler.tasks == []


@pytest.mark.anyio
async def test_missing_job_is_reported_without_side_effects(settings, export_jobs_repo, books_repo, storage, scheduler):
  outcome = await _processor(settings, export_jobs_repo, books_repo, storage, scheduler).process("missing")

  assert outcome.action == "not_found"
  assert outcome.to_payload() == {"success": False, "action": "not_found"}
  assert storage.objects == {}


@pytest.mark.anyio
async def test_duplicate_delivery_does_not_double_count(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  for _ in range(3):
    books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  await processor.process("job-1", cursor=0)
  duplicate = await processor.process("job-1", cursor=0)

  assert duplicate.action == "stale"
  assert export_jobs_repo.jobs["job-1"].processed_pages == 1
  assert len(scheduler.tasks) == 1


@pytest.mark.anyio
async def test_progress_never_decreases(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  for _ in range(4):
    books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  observed = []
  await processor.process("job-1", cursor=0)
  observed.append(export_jobs_repo.jobs["job-1"].processed_pages)
  while scheduler.tasks:
    task = scheduler.pop()
    # Interleave a late duplicate of an earlier cursor with every real delivery.
    await processor.process("job-1", cursor=max(task.cursor - 1, 0))
    await processor.process(task.job_id, cursor=task.cursor)
    observed.append(export_jobs_repo.jobs["job-1"].processed_pages)

  assert observed == sorted(observed)
  assert export_jobs_repo.jobs["job-1"].processed_pages == 4
  assert export_jobs_repo.jobs["job-1"].status == "completed"


@pytest.mark.anyio
async def test_invalid_page_payload_is_counted_and_chain_continues(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1", title="Zoo")
  books_repo.add_page("book-1")
  books_repo.add_page("book-1", image_url="https://cdn.example.com/not-inline.png")
  books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo, title="Zoo")
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  await processor.process("job-1", cursor=0)
  actions = await _drain(processor, scheduler)

  assert actions == ["skipped_unit", "staged", "finalized"]
  job = export_jobs_repo.jobs["job-1"]
  assert job.status == "completed"
  assert job.processed_pages == 3
  assert job.failed_pages == 1
  names = _archive_names(storage.objects["exports/user-1/Zoo_1700000000000.zip"][0])
  assert [name.split("/")[1][:4] for name in names] == ["0001", "0003"]


@pytest.mark.anyio
async def test_pages_removed_after_creation_count_as_failed_units(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  doomed = books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  del books_repo.pages[doomed.page_id]
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  await processor.process("job-1", cursor=0)
  actions = await _drain(processor, scheduler)

  assert actions == ["skipped_unit", "finalized"]
  assert export_jobs_repo.jobs["job-1"].failed_pages == 1


@pytest.mark.anyio
async def test_nothing_staged_fails_the_job(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1", image_url="not-a-data-url")
  await _create_job(export_jobs_repo, books_repo)
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  await processor.process("job-1", cursor=0)
  actions = await _drain(processor, scheduler)

  assert actions == ["failed"]
  job = export_jobs_repo.jobs["job-1"]
  assert job.status == "failed"
  assert job.error_message == "No pages could be staged for export"
  assert job.download_url is None


@pytest.mark.anyio
async def test_storage_failure_fails_the_job_without_scheduling(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  storage.fail_puts_for.add("export-staging/")
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  outcome = await processor.process("job-1", cursor=0)

  assert outcome.action == "failed"
  job = export_jobs_repo.jobs["job-1"]
  assert job.status == "failed"
  assert job.error_message.startswith("Export failed: put failed for export-staging/job-1/")
  assert job.processed_pages == 0
  assert scheduler.tasks == []


@pytest.mark.anyio
async def test_finalize_refuses_an_unfinished_job(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  job = await _create_job(export_jobs_repo, books_repo)

  with pytest.raises(ValueError, match="cannot finalize"):
    await _processor(settings, export_jobs_repo, books_repo, storage, scheduler).finalize(job)


@pytest.mark.anyio
async def test_cleanup_failure_does_not_undo_completion(settings, export_jobs_repo, books_repo, storage, scheduler, caplog):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  storage.fail_deletes = True
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  with caplog.at_level(logging.WARNING, logger="colorbook.jobs.export_worker"):
    await processor.process("job-1", cursor=0)
    actions = await _drain(processor, scheduler)

  assert actions == ["finalized"]
  assert export_jobs_repo.jobs["job-1"].status == "completed"
  assert any("failed to delete staged object" in record.getMessage() for record in caplog.records)
  assert [key for key in storage.objects if key.startswith("export-staging/job-1/")]


@pytest.mark.anyio
async def test_empty_title_uses_default_archive_name(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1", title="")
  books_repo.add_page("book-1", image_url=png_data_url(b"jpeg-ish"))
  await _create_job(export_jobs_repo, books_repo, title="")
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)

  await processor.process("job-1", cursor=0)
  await _drain(processor, scheduler)

  assert "exports/user-1/coloring-book_1700000000000.zip" in storage.objects


@pytest.mark.anyio
async def test_enqueue_failure_handler_fails_active_job(settings, export_jobs_repo, books_repo):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  handler = export_enqueue_failure_handler(export_jobs_repo)

  await handler(ContinuationTask(kind="export", job_id="job-1", cursor=0), RuntimeError("queue down"))

  job = export_jobs_repo.jobs["job-1"]
  assert job.status == "failed"
  assert job.error_message == CONTINUATION_FAILURE_MESSAGE


@pytest.mark.anyio
async def test_enqueue_failure_handler_leaves_completed_job_alone(settings, export_jobs_repo, books_repo, storage, scheduler):
  books_repo.add_book("book-1")
  books_repo.add_page("book-1")
  await _create_job(export_jobs_repo, books_repo)
  processor = _processor(settings, export_jobs_repo, books_repo, storage, scheduler)
  await processor.process("job-1", cursor=0)
  await _drain(processor, scheduler)

  await export_enqueue_failure_handler(export_jobs_repo)(ContinuationTask(kind="export", job_id="job-1", cursor=1), RuntimeError("late"))

  assert export_jobs_repo.jobs["job-1"].status == "completed"
