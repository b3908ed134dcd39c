"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from colorbook.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the coloring book job service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  gcp_project_id: str | None
  gcs_storage_host: str | None
  storage_bucket: str
  export_staging_prefix: str
  export_object_prefix: str
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None
  task_service_provider: str
  cloud_tasks_queue_path: str | None
  cloud_run_invoker_service_account: str | None
  base_url: str | None
  task_secret: str | None
  generation_delay_seconds: float
  max_prompts_per_job: int
  staging_sweep_min_age_seconds: int
  image_gateway_api_key: str | None
  image_gateway_base_url: str
  image_gateway_model: str
  openai_api_key: str | None
  legnext_api_key: str | None
  legnext_base_url: str
  provider_timeout_seconds: int
  email_notifications_enabled: bool
  email_from_address: str | None
  email_from_name: str | None
  mailersend_api_key: str | None
  mailersend_timeout_seconds: int
  mailersend_base_url: str


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("COLORBOOK_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("COLORBOOK_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("COLORBOOK_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _parse_positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("COLORBOOK_ENV", "development").lower()

  # Toggle verbose SQL echo and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("COLORBOOK_DEBUG"))

  log_max_bytes = _parse_positive_int("COLORBOOK_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("COLORBOOK_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("COLORBOOK_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("COLORBOOK_LOG_HTTP_4XX"))

  task_service_provider = (os.getenv("COLORBOOK_TASK_SERVICE_PROVIDER") or "local-http").strip().lower()
  if task_service_provider not in {"local-http", "gcp"}:
    raise ValueError("COLORBOOK_TASK_SERVICE_PROVIDER must be 'local-http' or 'gcp'.")

  generation_delay_seconds = float(os.getenv("COLORBOOK_GENERATION_DELAY_SECONDS", "2"))
  if generation_delay_seconds < 0:
    raise ValueError("COLORBOOK_GENERATION_DELAY_SECONDS must be zero or positive.")

  max_prompts_per_job = _parse_positive_int("COLORBOOK_MAX_PROMPTS_PER_JOB", "50")
  staging_sweep_min_age_seconds = _parse_positive_int("COLORBOOK_STAGING_SWEEP_MIN_AGE_SECONDS", "3600")
  provider_timeout_seconds = _parse_positive_int("COLORBOOK_PROVIDER_TIMEOUT_SECONDS", "120")

  email_notifications_enabled = _parse_bool(os.getenv("COLORBOOK_EMAIL_NOTIFICATIONS_ENABLED"))
  email_from_address = _optional_str(os.getenv("COLORBOOK_EMAIL_FROM_ADDRESS"))
  mailersend_api_key = _optional_str(os.getenv("COLORBOOK_MAILERSEND_API_KEY"))
  mailersend_timeout_seconds = int(os.getenv("COLORBOOK_MAILERSEND_TIMEOUT_SECONDS", "10"))

  # Validate notification settings only when notifications are enabled.
  if email_notifications_enabled:
    if not email_from_address:
      raise ValueError("COLORBOOK_EMAIL_FROM_ADDRESS must be set when email notifications are enabled.")

    if not mailersend_api_key:
      raise ValueError("COLORBOOK_MAILERSEND_API_KEY must be set when email notifications are enabled.")

    if mailersend_timeout_seconds <= 0:
      raise ValueError("COLORBOOK_MAILERSEND_TIMEOUT_SECONDS must be a positive integer.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("COLORBOOK_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=os.getenv("COLORBOOK_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=int(os.getenv("COLORBOOK_PG_CONNECT_TIMEOUT", "5")),
    gcp_project_id=_optional_str(os.getenv("COLORBOOK_GCP_PROJECT_ID")),
    gcs_storage_host=_optional_str(os.getenv("COLORBOOK_GCS_STORAGE_HOST")),
    storage_bucket=(os.getenv("COLORBOOK_STORAGE_BUCKET") or "colorbook-assets").strip(),
    export_staging_prefix=(os.getenv("COLORBOOK_EXPORT_STAGING_PREFIX") or "export-staging").strip().strip("/"),
    export_object_prefix=(os.getenv("COLORBOOK_EXPORT_OBJECT_PREFIX") or "exports").strip().strip("/"),
    firebase_project_id=_optional_str(os.getenv("COLORBOOK_FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("COLORBOOK_FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
    task_service_provider=task_service_provider,
    cloud_tasks_queue_path=_optional_str(os.getenv("COLORBOOK_CLOUD_TASKS_QUEUE_PATH")),
    cloud_run_invoker_service_account=_optional_str(os.getenv("COLORBOOK_CLOUD_RUN_INVOKER_SERVICE_ACCOUNT")),
    base_url=_optional_str(os.getenv("COLORBOOK_BASE_URL")),
    task_secret=_optional_str(os.getenv("COLORBOOK_TASK_SECRET")),
    generation_delay_seconds=generation_delay_seconds,
    max_prompts_per_job=max_prompts_per_job,
    staging_sweep_min_age_seconds=staging_sweep_min_age_seconds,
    image_gateway_api_key=_optional_str(os.getenv("COLORBOOK_IMAGE_GATEWAY_API_KEY")),
    image_gateway_base_url=(os.getenv("COLORBOOK_IMAGE_GATEWAY_BASE_URL") or "https://ai.gateway.lovable.dev/v1").strip(),
    image_gateway_model=(os.getenv("COLORBOOK_IMAGE_GATEWAY_MODEL") or "google/gemini-2.5-flash-image").strip(),
    openai_api_key=_optional_str(os.getenv("COLORBOOK_OPENAI_API_KEY")),
    legnext_api_key=_optional_str(os.getenv("COLORBOOK_LEGNEXT_API_KEY")),
    legnext_base_url=(os.getenv("COLORBOOK_LEGNEXT_BASE_URL") or "https://api.legnext.ai/api/v1").strip(),
    provider_timeout_seconds=provider_timeout_seconds,
    email_notifications_enabled=email_notifications_enabled,
    email_from_address=email_from_address,
    email_from_name=_optional_str(os.getenv("COLORBOOK_EMAIL_FROM_NAME")),
    mailersend_api_key=mailersend_api_key,
    mailersend_timeout_seconds=mailersend_timeout_seconds,
    mailersend_base_url=(os.getenv("COLORBOOK_MAILERSEND_BASE_URL") or "https://api.mailersend.com/v1").strip(),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("COLORBOOK_DEBUG"))
  pg_connect_timeout = int(os.getenv("COLORBOOK_PG_CONNECT_TIMEOUT", "5"))
  if pg_connect_timeout <= 0:
    raise ValueError("COLORBOOK_PG_CONNECT_TIMEOUT must be a positive integer.")

  pg_dsn = os.getenv("COLORBOOK_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
