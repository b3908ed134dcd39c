"""Chat-completions image gateway provider using the openai SDK."""

from __future__ import annotations

import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from colorbook.ai.providers.base import GeneratedImage, ImageProvider, ImageProviderError, error_for_status

logger = logging.getLogger(__name__)


def extract_image_url(payload: dict[str, Any]) -> str | None:
  """Return choices[0].message.images[0].image_url.url when present."""
  choices = payload.get("choices") or []
  if not choices:
    return None
  message = choices[0].get("message") or {}
  images = message.get("images") or []
  if not images:
    return None
  image_url = images[0].get("image_url") or {}
  url = image_url.get("url") if isinstance(image_url, dict) else None
  return str(url) if url else None


class ChatImageGatewayProvider(ImageProvider):
  """Image model served over an OpenAI-compatible chat completions gateway."""

  def __init__(self, *, api_key: str | None, base_url: str, model: str, timeout_seconds: int) -> None:
    if not api_key:
      raise ValueError("COLORBOOK_IMAGE_GATEWAY_API_KEY is required for the image gateway provider")
    self.name = model
    # Retries are disabled; a 429 must reach the job so it can stop the batch.
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=float(timeout_seconds), max_retries=0)

  async def generate(self, prompt: str) -> GeneratedImage:
    try:
      response = await self._client.chat.completions.create(model=self.name, messages=[{"role": "user", "content": prompt}], extra_body={"modalities": ["image", "text"]})
    except openai.APIStatusError as exc:
      logger.warning("Image gateway error status=%s model=%s", exc.status_code, self.name)
      raise error_for_status(exc.status_code, exc.message) from exc
    except openai.APIConnectionError as exc:
      raise ImageProviderError(f"Image gateway unreachable: {exc}") from exc

    # Image parts are a gateway extension; they survive only in the raw dump.
    payload = response.model_dump()
    image_url = extract_image_url(payload)
    text = None
    if response.choices:
      text = response.choices[0].message.content
    if not image_url:
      logger.warning("Image gateway returned no image model=%s", self.name)
    return GeneratedImage(image_url=image_url, text=text)
