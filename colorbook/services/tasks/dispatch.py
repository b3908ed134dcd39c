"""Fire-and-forget scheduling of job continuations."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import BackgroundTasks

from colorbook.config import Settings
from colorbook.services.tasks.factory import get_task_enqueuer
from colorbook.services.tasks.interface import ContinuationTask, TaskEnqueuer

logger = logging.getLogger(__name__)

# Processors receive a plain callable; they never await delivery of the next unit.
ScheduleContinuation = Callable[[ContinuationTask], None]
EnqueueFailureHandler = Callable[[ContinuationTask, Exception], Awaitable[None]]


async def dispatch_continuation(task: ContinuationTask, settings: Settings, *, on_failure: EnqueueFailureHandler | None = None, enqueuer: TaskEnqueuer | None = None) -> None:
  """Enqueue a continuation, reporting failures to the caller's handler instead of raising."""
  active_enqueuer = enqueuer or get_task_enqueuer(settings)
  try:
    await active_enqueuer.enqueue(task)
  except Exception as exc:  # noqa: BLE001
    logger.error("Failed to enqueue %s continuation job=%s cursor=%s: %s", task.kind, task.job_id, task.cursor, exc, exc_info=True)
    if on_failure is None:
      return
    try:
      await on_failure(task, exc)
    except Exception:  # noqa: BLE001
      logger.error("Enqueue failure handler raised for %s job %s", task.kind, task.job_id, exc_info=True)


class BackgroundContinuationScheduler:
  """Schedules continuations on FastAPI background tasks so they run after the response is sent."""

  def __init__(self, background_tasks: BackgroundTasks, settings: Settings, *, on_failure: EnqueueFailureHandler | None = None, enqueuer: TaskEnqueuer | None = None) -> None:
    self._background_tasks = background_tasks
    self._settings = settings
    self._on_failure = on_failure
    self._enqueuer = enqueuer

  def __call__(self, task: ContinuationTask) -> None:
    self._background_tasks.add_task(dispatch_continuation, task, self._settings, on_failure=self._on_failure, enqueuer=self._enqueuer)
