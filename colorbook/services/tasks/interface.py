from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from colorbook.jobs.models import JobKind

# Internal endpoints that process one unit of each job kind.
CONTINUATION_PATHS: dict[str, str] = {"export": "/v1/exports", "generation": "/internal/tasks/process-generation-job"}


@dataclass(frozen=True)
class ContinuationTask:
  """Request to process the next unit of a job, optionally after a delay."""

  kind: JobKind
  job_id: str
  cursor: int
  delay_seconds: float = 0.0

  @property
  def path(self) -> str:
    return CONTINUATION_PATHS[self.kind]

  def payload(self) -> dict[str, Any]:
    """Body accepted by the internal endpoint for this job kind."""
    if self.kind == "export":
      return {"jobId": self.job_id, "isInternalCall": True, "cursor": self.cursor}
    return {"jobId": self.job_id, "promptIndex": self.cursor}


class TaskEnqueuer(Protocol):
  """Interface for enqueuing job continuations."""

  async def enqueue(self, task: ContinuationTask) -> None:
    """Hand a continuation to the queue; raise when it could not be accepted."""
    ...
