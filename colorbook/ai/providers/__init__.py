"""Provider implementations and model routing."""

from colorbook.ai.providers.base import AsyncImageProvider, FatalProviderError, GeneratedImage, ImageProvider, ImageProviderError, ImageTaskStatus
from colorbook.ai.providers.gateway import ChatImageGatewayProvider
from colorbook.ai.providers.legnext import LegnextProvider
from colorbook.ai.providers.openai_images import OpenAIImagesProvider
from colorbook.config import Settings

OPENAI_IMAGE_MODELS = frozenset({"dall-e-3", "dall-e-2", "gpt-image-1"})


def get_image_provider(settings: Settings, model: str | None = None) -> ImageProvider:
  """Return the synchronous provider that serves a model selector."""
  selected = (model or settings.image_gateway_model).strip()
  if selected in OPENAI_IMAGE_MODELS:
    return OpenAIImagesProvider(api_key=settings.openai_api_key, model=selected, timeout_seconds=settings.provider_timeout_seconds)
  return ChatImageGatewayProvider(api_key=settings.image_gateway_api_key, base_url=settings.image_gateway_base_url, model=selected, timeout_seconds=settings.provider_timeout_seconds)


def get_task_provider(settings: Settings) -> AsyncImageProvider:
  """Return the task-based provider used by the imagine/status flow."""
  return LegnextProvider(api_key=settings.legnext_api_key, base_url=settings.legnext_base_url)


__all__ = [
  "AsyncImageProvider",
  "ChatImageGatewayProvider",
  "FatalProviderError",
  "GeneratedImage",
  "ImageProvider",
  "ImageProviderError",
  "ImageTaskStatus",
  "LegnextProvider",
  "OpenAIImagesProvider",
  "get_image_provider",
  "get_task_provider",
]
