from __future__ import annotations

from colorbook.config import Settings
from colorbook.services.tasks.gcp import CloudTasksEnqueuer
from colorbook.services.tasks.interface import TaskEnqueuer
from colorbook.services.tasks.local import LocalHttpEnqueuer


def get_task_enqueuer(settings: Settings) -> TaskEnqueuer:
  """Factory to get the configured task enqueuer."""
  if settings.task_service_provider == "gcp":
    return CloudTasksEnqueuer(settings)
  return LocalHttpEnqueuer(settings)
