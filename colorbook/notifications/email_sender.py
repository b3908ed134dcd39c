"""Email backends for batch outcome notifications.

Delivery goes through the MailerSend HTTP API with `urllib`; the call is blocking and runs off the event loop.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass

from colorbook.notifications.contracts import EmailNotification, EmailSender, NotificationProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MailerSendConfig:
  api_key: str
  from_address: str
  from_name: str | None
  timeout_seconds: int
  base_url: str = "https://api.mailersend.com/v1"


def _recipient(email: str, name: str | None) -> dict[str, str]:
  return {"email": email, "name": name} if name else {"email": email}


class MailerSendEmailSender(EmailSender):
  def __init__(self, *, config: MailerSendConfig) -> None:
    if not config.api_key or not config.from_address:
      raise ValueError("COLORBOOK_MAILERSEND_API_KEY and COLORBOOK_EMAIL_FROM_ADDRESS are required when email notifications are enabled")
    self._config = config

  def _build_request(self, notification: EmailNotification) -> urllib.request.Request:
    payload: dict[str, object] = {
      "from": _recipient(self._config.from_address, self._config.from_name),
      "to": [_recipient(notification.to_address, notification.to_name)],
      "subject": notification.subject,
      "text": notification.text,
      "html": notification.html,
    }
    if notification.tags:
      payload["tags"] = list(notification.tags)
    headers = {"Authorization": f"Bearer {self._config.api_key}", "Content-Type": "application/json", "Accept": "application/json"}
    return urllib.request.Request(url=f"{self._config.base_url}/email", data=json.dumps(payload).encode("utf-8"), method="POST", headers=headers)

  def send(self, notification: EmailNotification) -> dict[str, str | None]:
    """Hand one outcome email to MailerSend; a 202 carries the message id in `X-Message-Id`."""
    try:
      with urllib.request.urlopen(self._build_request(notification), timeout=self._config.timeout_seconds) as response:
        return {"provider": "mailersend", "message_id": response.headers.get("X-Message-Id") or None, "request_id": response.headers.get("X-Request-Id")}
    except urllib.error.HTTPError as exc:
      body = exc.read().decode("utf-8") if exc.fp else ""
      logger.error("MailerSend rejected email to=%s status=%s body=%s", notification.to_address, exc.code, body)
      raise NotificationProviderError(f"MailerSend rejected the email with status {exc.code}", status_code=exc.code) from exc
    except urllib.error.URLError as exc:
      logger.error("MailerSend unreachable: %s", exc)
      raise NotificationProviderError(f"MailerSend unreachable: {exc.reason}") from exc


class NullEmailSender(EmailSender):
  """Used when notifications are disabled; drops every email."""

  def send(self, notification: EmailNotification) -> dict[str, str | None]:
    logger.debug("Email notifications disabled; dropping email to=%s subject=%s", notification.to_address, notification.subject)
    return {"provider": None, "message_id": None, "request_id": None}
