import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from colorbook.config import get_settings

logger = logging.getLogger("uvicorn.error")

# Page images travel as data URLs; anything echoed back is cut to this many characters.
_MAX_ECHO_CHARS = 120


def _json_safe(value: Any) -> Any:
  if value is None or isinstance(value, bool | int | float):
    return value
  if isinstance(value, str):
    if value.startswith("data:"):
      return "<data url omitted>"
    return value if len(value) <= _MAX_ECHO_CHARS else value[:_MAX_ECHO_CHARS] + "..."
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return f"{type(value).__name__}: {value}" if str(value) else type(value).__name__
  return str(value)


def _body(detail: Any, request: Request) -> dict[str, Any]:
  """Error body shared by every handler; `requestId` matches the `x-request-id` response header."""
  body: dict[str, Any] = {"detail": detail}
  request_id = getattr(request.state, "request_id", None)
  if request_id:
    body["requestId"] = request_id
  return body


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Drop the offending inputs from validation errors.

  A rejected export trigger or generation request can carry a whole book's prompts or a page image,
  neither of which belongs in a log line or a 422 body.
  """
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    entry = {key: value for key, value in error.items() if key != "input"}
    if isinstance(entry.get("ctx"), dict):
      entry["ctx"] = {key: value for key, value in entry["ctx"].items() if key != "input"}
    sanitized.append(_json_safe(entry))
  return sanitized


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Last resort for errors that escaped a route; job failures are recorded on the row, not here."""
  logger.error("Unhandled error request_id=%s path=%s error_type=%s", getattr(request.state, "request_id", None), request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_body("Internal Server Error", request))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Rejected request request_id=%s %s %s errors=%s", getattr(request.state, "request_id", None), request.method, request.url.path, errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_body(errors, request))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Pass 4xx details through (the client poller and export button act on them); hide 5xx details."""
  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger.error("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, request_id, request.url.path, exc.detail, exc_info=True)
    return JSONResponse(status_code=exc.status_code, content=_body("Internal Server Error", request))

  if get_settings().log_http_4xx:
    logger.warning("HTTP %s request_id=%s path=%s detail=%s", exc.status_code, request_id, request.url.path, exc.detail)
  return JSONResponse(status_code=exc.status_code, content=_body(exc.detail, request), headers=getattr(exc, "headers", None))
