"""Lifecycle-managed HTTP session shared by client-side callers."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Returns a fresh ID token (or None when signed out); called per request so refreshed tokens are picked up.
TokenProvider = Callable[[], Awaitable[str | None]]


class ClientSession:
  """Owns one connection pool and the caller's credentials between enter and exit.

  Callers receive the session explicitly instead of reaching for a module-level client.
  """

  def __init__(self, base_url: str, *, token_provider: TokenProvider | None = None, timeout_seconds: float = 30.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self._base_url = base_url.rstrip("/")
    self._token_provider = token_provider
    self._timeout = timeout_seconds
    self._transport = transport
    self._client: httpx.AsyncClient | None = None

  async def __aenter__(self) -> ClientSession:
    await self.open()
    return self

  async def __aexit__(self, exc_type: type[BaseException] | None, exc: BaseException | None, tb: TracebackType | None) -> None:
    await self.close()

  async def open(self) -> None:
    if self._client is None:
      self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport)
      logger.debug("Client session opened for %s", self._base_url)

  async def close(self) -> None:
    if self._client is not None:
      await self._client.aclose()
      self._client = None
      logger.debug("Client session closed for %s", self._base_url)

  @property
  def is_open(self) -> bool:
    return self._client is not None

  async def request(self, method: str, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> httpx.Response:
    if self._client is None:
      raise RuntimeError("ClientSession is not open; use it as an async context manager.")
    headers: dict[str, str] = {}
    if self._token_provider is not None:
      token = await self._token_provider()
      if token:
        headers["Authorization"] = f"Bearer {token}"
    return await self._client.request(method, path, json=json, params=params, headers=headers)
