"""What the notification service hands to an email backend."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class EmailNotification:
  """A rendered batch outcome email for one job owner."""

  to_address: str
  to_name: str | None
  subject: str
  text: str
  html: str
  # MailerSend tags, e.g. ("generation", "generation_stopped_v1"), for filtering delivery reports.
  tags: tuple[str, ...] = ()


class NotificationError(Exception):
  pass


class NotificationProviderError(NotificationError):
  """The email backend refused or could not be reached; the job outcome itself is unaffected."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


class EmailSender(Protocol):
  def send(self, notification: EmailNotification) -> dict[str, str | None]:
    """Deliver synchronously (callers run this in a threadpool) and return provider identifiers."""
