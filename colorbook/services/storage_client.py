"""Object storage for staged export pages and finished archives."""

from __future__ import annotations

import os
from typing import Protocol
from urllib.parse import quote, urlparse, urlunparse

from google.auth.credentials import AnonymousCredentials
from google.cloud import storage
from starlette.concurrency import run_in_threadpool

from colorbook.config import Settings


class ObjectStorage(Protocol):
  """Key/value object store; writes to an existing key overwrite it."""

  async def put(self, key: str, data: bytes, content_type: str) -> str:
    """Store bytes under a key and return a URL for the object."""

  async def get(self, key: str) -> bytes:
    """Return the bytes stored under a key."""

  async def list_keys(self, prefix: str) -> list[str]:
    """Return every key under a prefix, sorted."""

  async def delete(self, key: str) -> None:
    """Delete a key; missing keys are ignored."""


class StorageClient(ObjectStorage):
  """Thin wrapper over GCS and emulator access."""

  def __init__(self, settings: Settings) -> None:
    self._bucket_name = settings.storage_bucket
    self._storage_host = settings.gcs_storage_host
    # Ensure emulator endpoint is visible to the SDK in local development.
    if self._storage_host:
      emulator_endpoint = _normalize_emulator_endpoint(self._storage_host)
      os.environ["STORAGE_EMULATOR_HOST"] = emulator_endpoint
      self._client = storage.Client(project=settings.gcp_project_id or "local-dev", credentials=AnonymousCredentials(), client_options={"api_endpoint": emulator_endpoint})
    else:
      self._client = storage.Client(project=settings.gcp_project_id)

  @property
  def bucket_name(self) -> str:
    return self._bucket_name

  async def ensure_bucket(self) -> None:
    """Create the bucket when missing in local/dev flows."""
    # Keep production startup side-effect free; only auto-create in emulator mode.
    if not self._storage_host:
      return
    bucket = self._client.bucket(self._bucket_name)

    def _create_if_missing() -> None:
      if not bucket.exists(client=self._client):
        self._client.create_bucket(bucket)

    await run_in_threadpool(_create_if_missing)

  async def put(self, key: str, data: bytes, content_type: str) -> str:
    blob = self._client.bucket(self._bucket_name).blob(key)
    await run_in_threadpool(blob.upload_from_string, data, content_type)
    return self._public_url(key)

  async def get(self, key: str) -> bytes:
    blob = self._client.bucket(self._bucket_name).blob(key)
    return await run_in_threadpool(blob.download_as_bytes)

  async def list_keys(self, prefix: str) -> list[str]:
    def _list_names() -> list[str]:
      return sorted(blob.name for blob in self._client.list_blobs(self._bucket_name, prefix=prefix))

    return await run_in_threadpool(_list_names)

  async def delete(self, key: str) -> None:
    blob = self._client.bucket(self._bucket_name).blob(key)

    def _delete_if_present() -> None:
      if blob.exists(client=self._client):
        blob.delete()

    await run_in_threadpool(_delete_if_present)

  def _public_url(self, key: str) -> str:
    if self._storage_host:
      endpoint = _normalize_emulator_endpoint(self._storage_host)
      return f"{endpoint}/storage/v1/b/{self._bucket_name}/o/{quote(key, safe='')}?alt=media"
    return f"https://storage.googleapis.com/{self._bucket_name}/{quote(key)}"


def build_storage_client(settings: Settings) -> StorageClient:
  """Create a storage client instance with environment-aware credentials."""
  return StorageClient(settings)


def _normalize_emulator_endpoint(raw_endpoint: str) -> str:
  """Normalize emulator endpoint so the SDK receives scheme+host+port only."""
  parsed = urlparse(raw_endpoint)
  if not parsed.scheme or not parsed.netloc:
    return raw_endpoint.rstrip("/")
  return urlunparse((parsed.scheme, parsed.netloc, "", "", "", "")).rstrip("/")
