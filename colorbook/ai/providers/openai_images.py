"""OpenAI Images API provider (DALL-E)."""

from __future__ import annotations

import openai
from openai import AsyncOpenAI

from colorbook.ai.providers.base import GeneratedImage, ImageProvider, ImageProviderError, error_for_status


class OpenAIImagesProvider(ImageProvider):
  """Generate pages with the Images API, returned inline as base64 PNG data URLs."""

  def __init__(self, *, api_key: str | None, model: str = "dall-e-3", size: str = "1024x1024", timeout_seconds: int = 120) -> None:
    if not api_key:
      raise ValueError("COLORBOOK_OPENAI_API_KEY is required for the OpenAI images provider")
    self.name = model
    self._size = size
    self._client = AsyncOpenAI(api_key=api_key, timeout=float(timeout_seconds), max_retries=0)

  async def generate(self, prompt: str) -> GeneratedImage:
    try:
      response = await self._client.images.generate(model=self.name, prompt=prompt, size=self._size, response_format="b64_json", n=1)  # type: ignore[arg-type]
    except openai.APIStatusError as exc:
      raise error_for_status(exc.status_code, exc.message) from exc
    except openai.APIConnectionError as exc:
      raise ImageProviderError(f"OpenAI images unreachable: {exc}") from exc

    if not response.data or not response.data[0].b64_json:
      return GeneratedImage(image_url=None)
    image = response.data[0]
    return GeneratedImage(image_url=f"data:image/png;base64,{image.b64_json}", text=image.revised_prompt)
