import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI
from sqlalchemy import text

from colorbook.core.database import get_db_engine
from colorbook.core.firebase import initialize_firebase
from colorbook.core.logging import _initialize_logging
from colorbook.services.storage_client import build_storage_client


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging, auth and the asset bucket once uvicorn starts."""
  from colorbook.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("colorbook.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")

    initialize_firebase()
    # Staging and archives share one bucket; only the emulator auto-creates it.
    try:
      storage_client = build_storage_client(settings)
      await storage_client.ensure_bucket()
      logger.info("Asset bucket ensured: %s", storage_client.bucket_name)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Failed to ensure asset bucket at startup: %s", exc)

    await _log_db_state(logger=logger, dsn=settings.pg_dsn)

  except Exception:
    # Log initialization failures but allow the app to continue starting.
    logger.warning("Startup initialization failed; continuing without it.", exc_info=True)

  yield

  engine = get_db_engine()
  if engine is not None:
    await engine.dispose()


def _redact_dsn(dsn: str | None) -> str:
  """Hide credentials when logging a DSN."""
  if not dsn:
    return "<unset>"
  parsed = urlparse(dsn)
  host = parsed.hostname or "?"
  port = f":{parsed.port}" if parsed.port else ""
  return f"{parsed.scheme}://***@{host}{port}{parsed.path}"


async def _log_db_state(*, logger: logging.Logger, dsn: str | None) -> None:
  """Log connectivity so misconfigured databases show up at boot instead of on the first job."""
  engine = get_db_engine()
  if engine is None:
    logger.warning("COLORBOOK_PG_DSN is not set; job persistence is unavailable.")
    return
  try:
    async with engine.connect() as connection:
      await connection.execute(text("SELECT 1"))
    logger.info("Database reachable at %s", _redact_dsn(dsn))
  except Exception as exc:  # noqa: BLE001
    logger.warning("Database check failed for %s: %s", _redact_dsn(dsn), exc)
