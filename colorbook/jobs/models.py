"""Domain models for export and batch generation jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

JobStatus = Literal["pending", "processing", "completed", "failed"]
JobKind = Literal["export", "generation"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"pending", "processing"})
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass
class ExportJobRecord:
  """Represents a chained export of one book's pages into a ZIP archive."""

  job_id: str
  user_id: str
  book_id: str
  book_title: str
  status: JobStatus
  total_pages: int
  processed_pages: int = 0
  current_offset: int = 0
  failed_pages: int = 0
  download_url: str | None = None
  error_message: str | None = None
  created_at: datetime | None = None
  updated_at: datetime | None = None
  completed_at: datetime | None = None

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES


@dataclass
class GenerationJobRecord:
  """Represents a chained batch of prompts, one generated page per prompt."""

  job_id: str
  user_id: str
  book_id: str
  status: JobStatus
  prompts: list[str] = field(default_factory=list)
  completed_count: int = 0
  failed_count: int = 0
  skipped_count: int = 0
  model: str = "google/gemini-2.5-flash-image"
  border: str = "none"
  add_bleed: bool = False
  notify_email: str | None = None
  error_message: str | None = None
  created_at: datetime | None = None
  updated_at: datetime | None = None
  completed_at: datetime | None = None

  @property
  def total_count(self) -> int:
    return len(self.prompts)

  @property
  def processed_count(self) -> int:
    """Prompts already accounted for; also the index of the next prompt to run."""
    return self.completed_count + self.failed_count

  @property
  def is_terminal(self) -> bool:
    return self.status in TERMINAL_STATUSES
