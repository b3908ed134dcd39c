from colorbook.config import Settings
from colorbook.storage.books_repo import BooksRepository
from colorbook.storage.jobs_repo import ExportJobsRepository, GenerationJobsRepository
from colorbook.storage.postgres_books_repo import PostgresBooksRepository
from colorbook.storage.postgres_jobs_repo import PostgresExportJobsRepository, PostgresGenerationJobsRepository


def _require_dsn(settings: Settings) -> None:
  if not settings.pg_dsn:
    raise ValueError("COLORBOOK_PG_DSN must be set to enable Postgres persistence.")


def _get_books_repo(settings: Settings) -> BooksRepository:
  """Return the active books repository."""
  _require_dsn(settings)
  return PostgresBooksRepository()


def _get_export_jobs_repo(settings: Settings) -> ExportJobsRepository:
  """Return the active export jobs repository."""
  _require_dsn(settings)
  return PostgresExportJobsRepository()


def _get_generation_jobs_repo(settings: Settings) -> GenerationJobsRepository:
  """Return the active generation jobs repository."""
  _require_dsn(settings)
  return PostgresGenerationJobsRepository()
