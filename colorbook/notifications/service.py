"""Best-effort notification of batch generation outcomes."""

from __future__ import annotations

import logging

from starlette.concurrency import run_in_threadpool

from colorbook.jobs.models import GenerationJobRecord
from colorbook.notifications.contracts import EmailNotification, EmailSender, NotificationProviderError
from colorbook.notifications.templates import render_email_template

logger = logging.getLogger(__name__)


class NotificationService:
  """Sends job outcome emails; delivery problems are logged and never raised."""

  def __init__(self, *, email_sender: EmailSender, email_enabled: bool) -> None:
    self._email_sender = email_sender
    self._email_enabled = email_enabled

  async def notify_generation_finished(self, job: GenerationJobRecord) -> bool:
    """Email the job owner a summary of a terminal generation job. Returns True when an email was handed off."""
    if not self._email_enabled or not job.notify_email:
      return False
    if not job.is_terminal:
      logger.warning("Skipping notification for generation job %s in status %s", job.job_id, job.status)
      return False

    if job.status == "failed":
      template_id = "generation_stopped_v1"
      placeholders = {"completed_count": job.completed_count, "failed_count": job.failed_count, "reason": job.error_message or "Generation stopped"}
    else:
      template_id = "generation_completed_v1"
      failed_line = f"Pages failed: {job.failed_count}" if job.failed_count > 0 else ""
      placeholders = {"completed_count": job.completed_count, "failed_line": failed_line}

    try:
      subject, text_body, html_body = render_email_template(template_id=template_id, placeholders=placeholders)
      notification = EmailNotification(to_address=job.notify_email, to_name=None, subject=subject, text=text_body, html=html_body, tags=("generation", template_id))
      result = await run_in_threadpool(self._email_sender.send, notification)
    except NotificationProviderError as exc:
      logger.error("Generation job %s notification delivery failed (provider error): %s", job.job_id, exc)
      return False
    except Exception as exc:  # noqa: BLE001
      logger.error("Generation job %s notification delivery failed: %s", job.job_id, exc, exc_info=True)
      return False

    logger.info("Generation job %s notification sent template=%s message_id=%s", job.job_id, template_id, result.get("message_id"))
    return True
