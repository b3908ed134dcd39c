from __future__ import annotations

import json
import logging
import time

from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2
from starlette.concurrency import run_in_threadpool

from colorbook.config import Settings
from colorbook.core.security import TASK_SECRET_HEADER
from colorbook.services.tasks.interface import ContinuationTask, TaskEnqueuer

logger = logging.getLogger(__name__)


class CloudTasksEnqueuer(TaskEnqueuer):
  """Enqueues continuations to Google Cloud Tasks (at-least-once, retried by the queue)."""

  def __init__(self, settings: Settings) -> None:
    self.settings = settings
    self.client = tasks_v2.CloudTasksClient()

  def _build_task(self, task: ContinuationTask) -> dict:
    if not self.settings.base_url:
      raise RuntimeError("Base URL not configured, strictly required for CloudTasksEnqueuer.")
    if not self.settings.task_secret:
      raise RuntimeError("Task secret not configured.")

    url = f"{self.settings.base_url.rstrip('/')}{task.path}"
    http_request: dict = {
      "http_method": tasks_v2.HttpMethod.POST,
      "url": url,
      # Authorization carries the Cloud Run OIDC token, so the shared secret rides in its own header.
      "headers": {"Content-Type": "application/json", TASK_SECRET_HEADER: self.settings.task_secret},
      "body": json.dumps(task.payload()).encode(),
    }
    if self.settings.cloud_run_invoker_service_account:
      http_request["oidc_token"] = {"service_account_email": self.settings.cloud_run_invoker_service_account, "audience": self.settings.base_url.rstrip("/")}

    cloud_task: dict = {"http_request": http_request}
    if task.delay_seconds > 0:
      schedule_time = timestamp_pb2.Timestamp()
      schedule_time.FromNanoseconds(int((time.time() + task.delay_seconds) * 1_000_000_000))
      cloud_task["schedule_time"] = schedule_time
    return cloud_task

  async def enqueue(self, task: ContinuationTask) -> None:
    """Create a Cloud Task that POSTs the continuation to this service."""
    parent = self.settings.cloud_tasks_queue_path
    if not parent:
      raise RuntimeError("Cloud Tasks queue path not configured.")

    cloud_task = self._build_task(task)
    response = await run_in_threadpool(self.client.create_task, request={"parent": parent, "task": cloud_task})
    logger.info("Enqueued task %s for %s job %s cursor=%s delay=%.1fs", response.name, task.kind, task.job_id, task.cursor, task.delay_seconds)
