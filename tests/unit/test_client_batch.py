from __future__ import annotations

import json

import httpx
import pytest

from colorbook.client.api import ColoringBookApi
from colorbook.client.batch import RealtimeBatchGenerator
from colorbook.client.session import ClientSession


def _session(handler) -> ClientSession:
  return ClientSession("http://api.test", transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_batch_generates_numbered_variations():
  prompts: list[str] = []
  saved: list[tuple[str, str]] = []

  def _handler(request: httpx.Request) -> httpx.Response:
    prompts.append(json.loads(request.content)["prompt"])
    return httpx.Response(200, json={"status": "completed", "imageUrl": f"data:image/png;base64,{len(prompts)}"})

  async def _on_image(title: str, url: str) -> None:
    saved.append((title, url))

  async with _session(_handler) as session:
    progress = await RealtimeBatchGenerator(ColoringBookApi(session), delay_seconds=0, on_image=_on_image).run(" a fox ", 3)

  assert progress.completed == 3
  assert progress.stopped_reason is None
  assert prompts == [f"a fox (Variation {index} of 3, unique design)" for index in (1, 2, 3)]
  assert [title for title, _ in saved] == ["a fox (1)", "a fox (2)", "a fox (3)"]


@pytest.mark.anyio
async def test_rate_limit_ends_the_batch():
  calls = {"count": 0}

  def _handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    if calls["count"] == 2:
      return httpx.Response(429, json={"detail": "Rate limit exceeded"})
    return httpx.Response(200, json={"status": "completed", "imageUrl": "data:image/png;base64,AAA"})

  async with _session(_handler) as session:
    progress = await RealtimeBatchGenerator(ColoringBookApi(session), delay_seconds=0).run("a fox", 5)

  assert calls["count"] == 2
  assert (progress.completed, progress.failed, progress.attempted) == (1, 1, 2)
  assert progress.stopped_reason == "Rate limit exceeded"


@pytest.mark.anyio
async def test_other_errors_only_fail_one_image():
  calls = {"count": 0}

  def _handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    if calls["count"] == 1:
      return httpx.Response(502, json={"detail": "No image generated"})
    return httpx.Response(200, json={"status": "completed", "imageUrl": "data:image/png;base64,AAA"})

  async with _session(_handler) as session:
    progress = await RealtimeBatchGenerator(ColoringBookApi(session), delay_seconds=0, failure_delay_seconds=0).run("a fox", 3)

  assert (progress.completed, progress.failed) == (2, 1)


@pytest.mark.anyio
async def test_stop_is_honored_between_units():
  calls = {"count": 0}

  async with _session(lambda request: httpx.Response(200, json={"status": "completed", "imageUrl": "data:image/png;base64,AAA"})) as session:
    generator = RealtimeBatchGenerator(ColoringBookApi(session), delay_seconds=0)

    async def _on_image(title: str, url: str) -> None:
      calls["count"] += 1
      if calls["count"] == 2:
        generator.stop()

    generator._on_image = _on_image
    progress = await generator.run("a fox", 10)

  assert progress.completed == 2
  assert progress.stopped_reason == "stopped"
  assert generator.stop_requested


@pytest.mark.anyio
async def test_invalid_batch_arguments():
  generator = RealtimeBatchGenerator(ColoringBookApi(ClientSession("http://api.test")))

  with pytest.raises(ValueError):
    await generator.run("   ", 2)
  with pytest.raises(ValueError):
    await generator.run("a fox", 0)


@pytest.mark.anyio
async def test_transport_error_only_fails_one_image():
  calls = {"count": 0}

  def _handler(request: httpx.Request) -> httpx.Response:
    calls["count"] += 1
    if calls["count"] == 2:
      raise httpx.ConnectError("connection reset", request=request)
    return httpx.Response(200, json={"status": "completed", "imageUrl": "data:image/png;base64,AAA"})

  async with _session(_handler) as session:
    progress = await RealtimeBatchGenerator(ColoringBookApi(session), delay_seconds=0, failure_delay_seconds=0).run("a fox", 3)

  assert calls["count"] == 3
  assert (progress.completed, progress.failed) == (2, 1)
  assert progress.stopped_reason is None


@pytest.mark.anyio
async def test_failing_page_callback_counts_the_page_as_failed():
  async def _on_image(title: str, url: str) -> None:
    if title.endswith("(1)"):
      raise RuntimeError("could not save page")

  async with _session(lambda request: httpx.Response(200, json={"status": "completed", "imageUrl": "data:image/png;base64,AAA"})) as session:
    progress = await RealtimeBatchGenerator(ColoringBookApi(session), delay_seconds=0, failure_delay_seconds=0, on_image=_on_image).run("a fox", 2)

  assert (progress.completed, progress.failed) == (1, 1)
  assert len(progress.images) == 1
