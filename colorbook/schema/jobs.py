from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from colorbook.core.database import Base

_STATUS_CHECK = "status IN ('pending', 'processing', 'completed', 'failed')"


class ExportJob(Base):
  __tablename__ = "export_jobs"
  __table_args__ = (
    CheckConstraint(_STATUS_CHECK, name="ck_export_jobs_status"),
    CheckConstraint("processed_pages <= total_pages", name="ck_export_jobs_progress"),
    Index("ix_export_jobs_user_status", "user_id", "status"),
    Index("ix_export_jobs_user_book", "user_id", "book_id"),
    Index("ix_export_jobs_status", "status"),
    # At most one active export per book; the second insert fails and attaches to the first.
    Index("ux_export_jobs_active_book", "book_id", unique=True, postgresql_where=text("status IN ('pending', 'processing')")),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False)
  book_id: Mapped[str] = mapped_column(ForeignKey("coloring_books.id", ondelete="CASCADE"), nullable=False)
  book_title: Mapped[str] = mapped_column(Text, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
  total_pages: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  processed_pages: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  current_offset: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  failed_pages: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  download_url: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class GenerationJob(Base):
  __tablename__ = "generation_jobs"
  __table_args__ = (
    CheckConstraint(_STATUS_CHECK, name="ck_generation_jobs_status"),
    CheckConstraint("completed_count + failed_count + skipped_count <= total_count", name="ck_generation_jobs_counts"),
    Index("ix_generation_jobs_user_status", "user_id", "status"),
    Index("ix_generation_jobs_status", "status"),
    Index("ix_generation_jobs_pending", "created_at", postgresql_where=text("status = 'pending'")),
  )

  id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str] = mapped_column(String, nullable=False)
  book_id: Mapped[str] = mapped_column(ForeignKey("coloring_books.id", ondelete="CASCADE"), nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'pending'"))
  prompts: Mapped[list] = mapped_column(JSONB, nullable=False)
  total_count: Mapped[int] = mapped_column(Integer, nullable=False)
  completed_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  failed_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  model: Mapped[str] = mapped_column(String, nullable=False)
  border: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'none'"))
  add_bleed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
  notify_email: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
  completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
