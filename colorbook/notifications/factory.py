"""Factory helpers for notification services."""

from __future__ import annotations

from colorbook.config import Settings
from colorbook.notifications.contracts import EmailSender
from colorbook.notifications.email_sender import MailerSendConfig, MailerSendEmailSender, NullEmailSender
from colorbook.notifications.service import NotificationService


def build_notification_service(settings: Settings, *, email_enabled: bool | None = None) -> NotificationService:
  """Construct a notification service based on environment configuration."""
  effective_email_enabled = settings.email_notifications_enabled if email_enabled is None else bool(email_enabled)

  # Email is disabled by default to avoid accidental delivery in dev/test.
  if effective_email_enabled:
    mailersend_config = MailerSendConfig(
      api_key=settings.mailersend_api_key or "", from_address=settings.email_from_address or "", from_name=settings.email_from_name, timeout_seconds=settings.mailersend_timeout_seconds, base_url=settings.mailersend_base_url
    )
    email_sender: EmailSender = MailerSendEmailSender(config=mailersend_config)
  else:
    email_sender = NullEmailSender()

  return NotificationService(email_sender=email_sender, email_enabled=effective_email_enabled)
