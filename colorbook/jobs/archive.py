"""Naming, payload decoding and ZIP assembly for book exports."""

from __future__ import annotations

import base64
import binascii
import re
import tempfile
from pathlib import Path

import pyzipper

from colorbook.jobs.errors import InvalidImagePayloadError
from colorbook.utils.ids import short_id

DEFAULT_ARCHIVE_TITLE = "coloring-book"

_UNSAFE_TITLE_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_DATA_URL = re.compile(r"^data:image/([\w.+-]+);base64,(.+)$", re.DOTALL)
_EXTENSIONS = {"png": "png", "jpeg": "jpg", "jpg": "jpg", "webp": "webp", "gif": "gif"}


def sanitize_title(title: str | None) -> str:
  """Make a book title safe for file and folder names (30 chars max)."""
  safe = _UNSAFE_TITLE_CHARS.sub("_", title or "")[:30]
  return safe or DEFAULT_ARCHIVE_TITLE


def staged_filename(position: int, page_id: str, extension: str = "png") -> str:
  """Zero-padded position plus short page id, so names sort in page order and never collide."""
  return f"{position:04d}_{short_id(page_id)}.{extension}"


def staging_prefix(base_prefix: str, job_id: str) -> str:
  return f"{base_prefix}/{job_id}/"


def archive_key(base_prefix: str, user_id: str, safe_title: str, timestamp_ms: int) -> str:
  """Permanent archive location; the timestamp keeps repeated exports from overwriting each other."""
  return f"{base_prefix}/{user_id}/{safe_title}_{timestamp_ms}.zip"


def decode_data_url(payload: str) -> tuple[bytes, str, str]:
  """Decode a base64 image data URL into (bytes, content type, file extension)."""
  match = _DATA_URL.match(payload.strip()) if payload else None
  if match is None:
    raise InvalidImagePayloadError("Page image is not an inline base64 data URL")

  subtype = match.group(1).lower()
  try:
    data = base64.b64decode(match.group(2), validate=False)
  except (binascii.Error, ValueError) as exc:
    raise InvalidImagePayloadError("Page image payload is not valid base64") from exc
  if not data:
    raise InvalidImagePayloadError("Page image payload is empty")
  return data, f"image/{subtype}", _EXTENSIONS.get(subtype, "png")


def build_archive(folder: str, entries: list[tuple[str, bytes]]) -> bytes:
  """Zip staged files under a single top-level folder and return the archive bytes."""
  with tempfile.TemporaryDirectory(prefix="book-export-") as tmp_dir_raw:
    zip_path = Path(tmp_dir_raw) / f"{folder}.zip"
    with pyzipper.ZipFile(zip_path, mode="w", compression=pyzipper.ZIP_DEFLATED) as archive:
      for filename, data in entries:
        archive.writestr(f"{folder}/{filename}", data)
    return zip_path.read_bytes()
