from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from colorbook.core.database import Base


class ColoringBook(Base):
  __tablename__ = "coloring_books"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  title: Mapped[str] = mapped_column(Text, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  page_size: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'8.5x11'"))
  status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'draft'"))
  # Per-book sequence counter; page numbers are allocated by incrementing it.
  last_page_number: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class BookPage(Base):
  __tablename__ = "book_pages"
  __table_args__ = (Index("ix_book_pages_book_page_number", "book_id", "page_number"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  book_id: Mapped[str] = mapped_column(ForeignKey("coloring_books.id", ondelete="CASCADE"), nullable=False)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  prompt: Mapped[str] = mapped_column(Text, nullable=False)
  image_url: Mapped[str] = mapped_column(Text, nullable=False)
  page_number: Mapped[int] = mapped_column(Integer, nullable=False)
  art_style: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'line_art'"))
  category: Mapped[str | None] = mapped_column(String, nullable=True)
  triage_status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
  rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
