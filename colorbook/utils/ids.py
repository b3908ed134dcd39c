"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_page_id() -> str:
  """Return a new page identifier."""
  return str(uuid.uuid4())


def short_id(identifier: str) -> str:
  """Return the leading segment of a uuid-style id for human-readable names."""
  return identifier.split("-")[0]
