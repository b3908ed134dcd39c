"""Database initialization helper.

This script is intended for local/dev environments where a database may not exist yet.
It validates the target database name before using it in SQL, because CREATE DATABASE
cannot be parameterized in PostgreSQL, then creates every table and index the job service uses.
"""

import asyncio
import os
import re
import sys

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import create_async_engine

# Add the project root to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))


_DB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def _validate_database_name(db_name: str) -> str:
  """Validate a PostgreSQL database name used as an identifier.

  How/Why:
  - The name cannot be passed as a bind parameter for `CREATE DATABASE`.
  - Restricting to alphanumerics and underscores prevents SQL injection via identifier context.
  """
  if not db_name:
    raise ValueError("Target database name is empty.")

  if not _DB_NAME_PATTERN.fullmatch(db_name):
    raise ValueError("Target database name contains invalid characters (allowed: A-Z, a-z, 0-9, _).")

  return db_name


def _async_url(dsn: str):
  url = make_url(dsn)
  # Ensure we are using the async driver
  if url.drivername.startswith("postgresql") and "+asyncpg" not in url.drivername:
    url = url.set(drivername="postgresql+asyncpg")
  return url


async def create_database_if_not_exists(dsn: str) -> None:
  """Create the configured database if it does not already exist."""
  url = _async_url(dsn)
  target_db = _validate_database_name(url.database or "")

  print(f"Connecting to postgres to check for database '{target_db}'...")
  # We need isolation_level="AUTOCOMMIT" to CREATE DATABASE
  engine = create_async_engine(url.set(database="postgres"), isolation_level="AUTOCOMMIT")

  try:
    async with engine.connect() as conn:
      result = await conn.execute(text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": target_db})
      if result.scalar() == 1:
        print(f"Database '{target_db}' already exists.")
      else:
        print(f"Database '{target_db}' does not exist. Creating...")
        await conn.execute(text(f'CREATE DATABASE "{target_db}"'))
        print(f"Database '{target_db}' created successfully.")
  finally:
    await engine.dispose()


async def create_tables(dsn: str) -> None:
  """Create all mapped tables; existing tables are left untouched."""
  from colorbook.core.database import Base
  from colorbook.schema import BookPage, ColoringBook, ExportJob, GenerationJob  # noqa: F401

  engine = create_async_engine(_async_url(dsn))
  try:
    async with engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)
    print(f"Tables ensured: {', '.join(sorted(Base.metadata.tables))}")
  finally:
    await engine.dispose()


async def main() -> None:
  # Import after path setup so the script works when run directly.
  from colorbook.config import get_database_settings

  dsn = get_database_settings().pg_dsn
  if not dsn:
    print("Error: COLORBOOK_PG_DSN is not set.")
    sys.exit(1)

  try:
    await create_database_if_not_exists(dsn)
    await create_tables(dsn)
  except Exception as e:
    print(f"Error initializing database: {e}")
    sys.exit(1)


if __name__ == "__main__":
  asyncio.run(main())
