"""End-user and service credential checks.

End users authenticate with Firebase ID tokens. Internal continuations authenticate with a
shared task secret, sent either as `X-Colorbook-Task-Secret` (Cloud Tasks, where the
Authorization header carries the Cloud Run OIDC token) or as `Authorization: Bearer <secret>`.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from colorbook.config import Settings, get_settings
from colorbook.core.firebase import verify_id_token

logger = logging.getLogger(__name__)

security_scheme = HTTPBearer(auto_error=False)

TASK_SECRET_HEADER = "X-Colorbook-Task-Secret"


@dataclass(frozen=True)
class AuthenticatedUser:
  """Identity resolved from a verified ID token."""

  uid: str
  email: str | None = None


async def resolve_user(credentials: HTTPAuthorizationCredentials | None) -> AuthenticatedUser:
  """Verify a bearer ID token and return the caller identity."""
  if credentials is None or not credentials.credentials:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing authorization header", headers={"WWW-Authenticate": "Bearer"})

  decoded_claims = await run_in_threadpool(verify_id_token, credentials.credentials)
  if not decoded_claims:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication credentials", headers={"WWW-Authenticate": "Bearer"})

  uid = decoded_claims.get("uid") or decoded_claims.get("sub")
  if not uid:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")

  email = decoded_claims.get("email")
  return AuthenticatedUser(uid=str(uid), email=str(email) if email else None)


async def get_current_user(credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)]) -> AuthenticatedUser:
  """Dependency resolving the end user for user-facing routes."""
  return await resolve_user(credentials)


def is_valid_task_credential(settings: Settings, *, task_secret_header: str | None, authorization: str | None) -> bool:
  """Return True when either task credential form matches the configured secret."""
  # Secure-by-default: an unset secret rejects every internal call.
  if not settings.task_secret:
    return False
  shared_secret_valid = secrets.compare_digest((task_secret_header or "").encode(), settings.task_secret.encode())
  bearer_valid = secrets.compare_digest((authorization or "").encode(), f"Bearer {settings.task_secret}".encode())
  return shared_secret_valid or bearer_valid


async def require_task_secret(
  settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_colorbook_task_secret: str | None = Header(default=None)
) -> None:
  """Dependency guarding internal task endpoints."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  if not is_valid_task_credential(settings, task_secret_header=x_colorbook_task_secret, authorization=authorization):
    logger.warning("Unauthorized access attempt to internal task endpoint")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
