from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from colorbook.api.routes import exports, generation, images, tasks
from colorbook.config import get_settings
from colorbook.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler
from colorbook.core.lifespan import lifespan
from colorbook.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

settings = get_settings()

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-request-id"])

# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(exports.router, prefix="/v1/exports", tags=["exports"])
app.include_router(generation.router, prefix="/v1/generation-jobs", tags=["generation"])
app.include_router(images.router, prefix="/v1/images", tags=["images"])
app.include_router(tasks.router, prefix="/internal/tasks", tags=["tasks"])
