"""Exceptions raised by job repositories and processors."""

from __future__ import annotations

# Stored on a job whose next unit could not be handed to the task queue.
CONTINUATION_FAILURE_MESSAGE = "Failed to schedule continuation"


class JobError(Exception):
  """Base class for job orchestration failures."""


class ActiveJobConflictError(JobError):
  """Raised when a book already has a pending or processing export job."""

  def __init__(self, book_id: str) -> None:
    super().__init__(f"Book {book_id} already has an active export job.")
    self.book_id = book_id


class NothingStagedError(JobError):
  """Raised when finalize finds no staged objects for a job."""


class InvalidImagePayloadError(JobError):
  """Raised when a page does not hold a decodable inline image."""
