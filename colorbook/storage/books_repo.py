"""Storage interface for books and their pages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class BookRecord:
  """Book metadata needed for ownership checks and archive naming."""

  book_id: str
  user_id: str
  title: str


@dataclass(frozen=True)
class PageRef:
  """Lightweight page locator used by the export cursor."""

  page_id: str
  page_number: int


@dataclass(frozen=True)
class PageRecord:
  """Full page row including the (possibly very large) image payload."""

  page_id: str
  book_id: str
  user_id: str
  prompt: str
  image_url: str
  page_number: int
  art_style: str = "line_art"
  created_at: datetime | None = None


class BooksRepository(Protocol):
  """Repository contract for books and pages."""

  async def get_book(self, book_id: str) -> BookRecord | None:
    """Fetch a book by identifier."""

  async def count_pages(self, book_id: str) -> int:
    """Return how many pages a book holds."""

  async def get_page_ref_at(self, book_id: str, offset: int) -> PageRef | None:
    """Return the page at a zero-based offset in page-number order."""

  async def get_page(self, page_id: str) -> PageRecord | None:
    """Fetch one full page row."""

  async def insert_generated_page(self, *, book_id: str, user_id: str, prompt: str, image_url: str, art_style: str = "line_art") -> PageRecord:
    """Insert a page at the book's next page number, allocated atomically."""
