"""Provider contracts for external image generation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

FatalReason = Literal["rate_limit", "quota", "auth"]
TaskState = Literal["processing", "completed", "failed"]

# Status codes that stop a batch outright instead of failing one prompt.
_FATAL_STATUS: dict[int, tuple[FatalReason, str]] = {
  429: ("rate_limit", "Rate limit exceeded"),
  402: ("quota", "Usage limit reached"),
  401: ("auth", "Provider authentication failed"),
  403: ("auth", "Provider authentication failed"),
}


@dataclass(frozen=True)
class GeneratedImage:
  """Provider result; `image_url` is a data URL or hosted URL, or None when nothing came back."""

  image_url: str | None
  text: str | None = None

  @property
  def usable(self) -> bool:
    return bool(self.image_url)


@dataclass(frozen=True)
class ImageTaskStatus:
  """Snapshot of an asynchronous provider task."""

  task_id: str
  status: TaskState
  progress: int
  image_url: str | None = None
  error: str | None = None


class ImageProviderError(Exception):
  """A provider call failed for this prompt only."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.status_code = status_code


class FatalProviderError(ImageProviderError):
  """The provider refuses further work (rate limit, quota or credentials)."""

  def __init__(self, message: str, *, reason: FatalReason, status_code: int | None = None) -> None:
    super().__init__(message, status_code=status_code)
    self.reason = reason


def error_for_status(status_code: int, detail: str | None = None) -> ImageProviderError:
  """Map an HTTP status from a provider to the matching error type."""
  fatal = _FATAL_STATUS.get(status_code)
  if fatal is not None:
    reason, message = fatal
    return FatalProviderError(message, reason=reason, status_code=status_code)
  message = f"Provider request failed with status {status_code}"
  if detail:
    message = f"{message}: {detail[:200]}"
  return ImageProviderError(message, status_code=status_code)


class ImageProvider(Protocol):
  """Synchronous provider: one call returns the finished image."""

  name: str

  async def generate(self, prompt: str) -> GeneratedImage:
    """Generate one image for a fully constructed prompt."""
    ...


class AsyncImageProvider(Protocol):
  """Task-based provider: submit, then poll for the result."""

  name: str

  async def submit(self, prompt: str) -> str:
    """Start a generation task and return its id."""
    ...

  async def get_status(self, task_id: str) -> ImageTaskStatus:
    """Read the current state of a task."""
    ...
