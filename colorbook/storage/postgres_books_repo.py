"""Postgres-backed repository for books and pages."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import func, select, update

from colorbook.core.database import get_session_factory
from colorbook.schema.books import BookPage, ColoringBook
from colorbook.storage.books_repo import BookRecord, BooksRepository, PageRecord, PageRef
from colorbook.utils.ids import generate_page_id


def _page_to_record(row: BookPage) -> PageRecord:
  return PageRecord(
    page_id=row.id, book_id=row.book_id, user_id=row.user_id, prompt=row.prompt, image_url=row.image_url, page_number=row.page_number, art_style=row.art_style, created_at=row.created_at
  )


class PostgresBooksRepository(BooksRepository):
  """Read pages for export and append generated pages."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def get_book(self, book_id: str) -> BookRecord | None:
    async with self._session_factory() as session:
      stmt = select(ColoringBook.id, ColoringBook.user_id, ColoringBook.title).where(ColoringBook.id == book_id)
      row = (await session.execute(stmt)).one_or_none()
      if row is None:
        return None
      return BookRecord(book_id=row.id, user_id=row.user_id, title=row.title)

  async def count_pages(self, book_id: str) -> int:
    async with self._session_factory() as session:
      total = await session.scalar(select(func.count()).select_from(BookPage).where(BookPage.book_id == book_id))
      return int(total or 0)

  async def get_page_ref_at(self, book_id: str, offset: int) -> PageRef | None:
    # Select only id/number here; the image payload is loaded separately, one page at a time.
    stmt = select(BookPage.id, BookPage.page_number).where(BookPage.book_id == book_id).order_by(BookPage.page_number.asc(), BookPage.id.asc()).offset(offset).limit(1)
    async with self._session_factory() as session:
      row = (await session.execute(stmt)).one_or_none()
      if row is None:
        return None
      return PageRef(page_id=row.id, page_number=row.page_number)

  async def get_page(self, page_id: str) -> PageRecord | None:
    async with self._session_factory() as session:
      row = await session.get(BookPage, page_id)
      return _page_to_record(row) if row is not None else None

  async def insert_generated_page(self, *, book_id: str, user_id: str, prompt: str, image_url: str, art_style: str = "line_art") -> PageRecord:
    max_existing = select(func.coalesce(func.max(BookPage.page_number), 0)).where(BookPage.book_id == book_id).scalar_subquery()
    # The UPDATE row-locks the book, so concurrent allocations for one book serialize here.
    allocate = (
      update(ColoringBook)
      .where(ColoringBook.id == book_id)
      .values(last_page_number=func.greatest(ColoringBook.last_page_number, max_existing) + 1)
      .returning(ColoringBook.last_page_number)
      .execution_options(synchronize_session=False)
    )
    async with self._session_factory() as session:
      async with session.begin():
        page_number = (await session.execute(allocate)).scalar_one_or_none()
        if page_number is None:
          raise LookupError(f"Book {book_id} not found")
        row = BookPage(id=generate_page_id(), book_id=book_id, user_id=user_id, prompt=prompt, image_url=image_url, page_number=int(page_number), art_style=art_style, created_at=datetime.now(UTC))
        session.add(row)
      return _page_to_record(row)
