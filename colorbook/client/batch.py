"""Client-side batch of single-image requests with a stop flag."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from colorbook.ai.prompts import build_variation_prompt
from colorbook.client.api import ApiError, ColoringBookApi, RateLimitedError, UsageLimitError

logger = logging.getLogger(__name__)

# Receives (page title, image URL) for each generated image.
ImageCallback = Callable[[str, str], Awaitable[None]]


@dataclass
class BatchProgress:
  total: int
  completed: int = 0
  failed: int = 0
  stopped_reason: str | None = None
  images: list[str] = field(default_factory=list)

  @property
  def attempted(self) -> int:
    return self.completed + self.failed


class RealtimeBatchGenerator:
  """Generate N variations of one prompt, one request at a time.

  `stop()` is honored between units; a request already in flight still completes. Rate or usage
  limit errors end the batch early because every following request would fail the same way.
  """

  def __init__(self, api: ColoringBookApi, *, delay_seconds: float = 1.5, failure_delay_seconds: float = 2.0, on_image: ImageCallback | None = None) -> None:
    self._api = api
    self._delay = delay_seconds
    self._failure_delay = failure_delay_seconds
    self._on_image = on_image
    self._stop_requested = False

  def stop(self) -> None:
    self._stop_requested = True

  @property
  def stop_requested(self) -> bool:
    return self._stop_requested

  async def run(self, prompt: str, count: int, *, model: str | None = None) -> BatchProgress:
    subject = prompt.strip()
    if not subject:
      raise ValueError("Prompt must not be empty")
    if count < 1:
      raise ValueError("count must be at least 1")

    self._stop_requested = False
    progress = BatchProgress(total=count)
    for index in range(count):
      if self._stop_requested:
        progress.stopped_reason = "stopped"
        logger.info("Batch stopped after %s/%s pages", progress.completed, count)
        break

      try:
        result = await self._api.generate_image(build_variation_prompt(subject, index, count), model=model)
        image_url = result.get("imageUrl")
        if not image_url:
          raise ApiError(502, "No image generated")
        if self._on_image is not None:
          await self._on_image(f"{subject} ({index + 1})", image_url)
      except (RateLimitedError, UsageLimitError) as exc:
        progress.failed += 1
        progress.stopped_reason = exc.detail
        logger.warning("Batch paused at page %s/%s: %s", index + 1, count, exc.detail)
        break
      except ApiError as exc:
        progress.failed += 1
        logger.warning("Batch page %s/%s failed: %s", index + 1, count, exc.detail)
        await asyncio.sleep(self._failure_delay)
      except Exception as exc:  # noqa: BLE001
        # Transport errors and a failing page callback only cost this page.
        progress.failed += 1
        logger.warning("Batch page %s/%s failed: %s", index + 1, count, exc)
        await asyncio.sleep(self._failure_delay)
      else:
        progress.completed += 1
        progress.images.append(image_url)

      if index < count - 1 and not self._stop_requested:
        await asyncio.sleep(self._delay)

    return progress
