from __future__ import annotations

import json
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from colorbook.ai.providers import ChatImageGatewayProvider, OpenAIImagesProvider, get_image_provider
from colorbook.ai.providers.base import FatalProviderError, ImageProviderError, error_for_status
from colorbook.ai.providers.gateway import extract_image_url
from colorbook.ai.providers.legnext import LegnextProvider, map_task_state


@pytest.mark.parametrize(("status_code", "reason"), [(429, "rate_limit"), (402, "quota"), (401, "auth"), (403, "auth")])
def test_batch_stopping_statuses_are_fatal(status_code, reason):
  error = error_for_status(status_code)

  assert isinstance(error, FatalProviderError)
  assert error.reason == reason
  assert error.status_code == status_code


def test_other_statuses_fail_one_prompt_only():
  error = error_for_status(500, "upstream exploded" * 50)

  assert type(error) is ImageProviderError
  assert error.message.startswith("Provider request failed with status 500: upstream exploded")
  assert len(error.message) < 260


def test_extract_image_url_reads_first_image_part():
  payload = {"choices": [{"message": {"content": "here", "images": [{"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}}]}}]}

  assert extract_image_url(payload) == "data:image/png;base64,AAA"
  assert extract_image_url({"choices": [{"message": {"content": "no image"}}]}) is None
  assert extract_image_url({}) is None


def test_model_selector_routes_to_provider(settings):
  configured = replace(settings, image_gateway_api_key="gw-key", openai_api_key="oa-key")

  assert isinstance(get_image_provider(configured, "dall-e-3"), OpenAIImagesProvider)
  gateway = get_image_provider(configured, None)
  assert isinstance(gateway, ChatImageGatewayProvider)
  assert gateway.name == configured.image_gateway_model


def test_missing_credentials_raise_value_error(settings):
  with pytest.raises(ValueError):
    get_image_provider(replace(settings, image_gateway_api_key=None), "google/gemini-2.5-flash-image")
  with pytest.raises(ValueError):
    get_image_provider(replace(settings, openai_api_key=None), "dall-e-3")


@pytest.mark.anyio
async def test_gateway_returns_image_from_raw_payload():
  provider = ChatImageGatewayProvider(api_key="key", base_url="https://gateway.example.com/v1", model="google/gemini-2.5-flash-image", timeout_seconds=30)
  response = MagicMock()
  response.model_dump.return_value = {"choices": [{"message": {"images": [{"image_url": {"url": "data:image/png;base64,QUJD"}}]}}]}
  response.choices = [MagicMock(message=MagicMock(content="A fox"))]
  provider._client = MagicMock()
  provider._client.chat.completions.create = AsyncMock(return_value=response)

  result = await provider.generate("draw a fox")

  assert result.usable
  assert result.image_url == "data:image/png;base64,QUJD"
  assert result.text == "A fox"
  kwargs = provider._client.chat.completions.create.await_args.kwargs
  assert kwargs["extra_body"] == {"modalities": ["image", "text"]}


@pytest.mark.anyio
async def test_gateway_maps_rate_limit_to_fatal_error():
  provider = ChatImageGatewayProvider(api_key="key", base_url="https://gateway.example.com/v1", model="m", timeout_seconds=30)
  request = httpx.Request("POST", "https://gateway.example.com/v1/chat/completions")
  error = openai.RateLimitError("Too many requests", response=httpx.Response(429, request=request), body=None)
  provider._client = MagicMock()
  provider._client.chat.completions.create = AsyncMock(side_effect=error)

  with pytest.raises(FatalProviderError) as exc_info:
    await provider.generate("draw a fox")

  assert exc_info.value.reason == "rate_limit"


@pytest.mark.parametrize(("raw", "expected"), [("completed", "completed"), ("SUCCESS", "completed"), ("failed", "failed"), ("error", "failed"), ("pending", "processing"), (None, "processing")])
def test_map_task_state(raw, expected):
  assert map_task_state(raw) == expected


@pytest.mark.anyio
async def test_legnext_submit_and_poll():
  seen: list[httpx.Request] = []

  def _handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    if request.method == "POST":
      return httpx.Response(200, json={"job_id": "task-9"})
    return httpx.Response(200, json={"status": "completed", "output": {"image_url": "https://cdn.example.com/9.png"}})

  provider = LegnextProvider(api_key="lx", base_url="https://legnext.example.com/api/v1/", transport=httpx.MockTransport(_handler))

  task_id = await provider.submit("a fox")
  status = await provider.get_status(task_id)

  assert task_id == "task-9"
  assert json.loads(seen[0].content) == {"text": "a fox"}
  assert seen[0].headers["x-api-key"] == "lx"
  assert str(seen[1].url) == "https://legnext.example.com/api/v1/task/task-9"
  assert status.status == "completed"
  assert status.progress == 100
  assert status.image_url == "https://cdn.example.com/9.png"


@pytest.mark.anyio
async def test_legnext_failed_task_reports_error():
  provider = LegnextProvider(api_key="lx", base_url="https://legnext.example.com/api/v1", transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "failed", "error": "banned prompt"})))

  status = await provider.get_status("task-1")

  assert status.status == "failed"
  assert status.error == "banned prompt"


@pytest.mark.anyio
async def test_legnext_quota_error_is_fatal():
  provider = LegnextProvider(api_key="lx", base_url="https://legnext.example.com/api/v1", transport=httpx.MockTransport(lambda request: httpx.Response(402, text="no credits")))

  with pytest.raises(FatalProviderError) as exc_info:
    await provider.submit("a fox")

  assert exc_info.value.reason == "quota"
