"""Single-page generation without a job row: one synchronous call, or submit-then-poll."""

import logging
from typing import Annotated, NoReturn

from fastapi import APIRouter, Depends, HTTPException, status

from colorbook.ai.prompts import build_coloring_page_prompt
from colorbook.ai.providers import AsyncImageProvider, FatalProviderError, ImageProviderError
from colorbook.api.deps import get_async_task_provider, get_provider_factory
from colorbook.api.models import ImageGenerateRequest, ImageGenerateResponse, ImageTaskStatusResponse, ImagineResponse
from colorbook.core.security import get_current_user
from colorbook.jobs.generation_worker import ProviderFactory

router = APIRouter(dependencies=[Depends(get_current_user)])
logger = logging.getLogger(__name__)

# Clients branch on these to stop batches; provider credential problems are ours, not the caller's.
_FATAL_HTTP_STATUS = {"rate_limit": status.HTTP_429_TOO_MANY_REQUESTS, "quota": status.HTTP_402_PAYMENT_REQUIRED, "auth": status.HTTP_502_BAD_GATEWAY}


def _raise_for_provider_error(exc: ImageProviderError) -> NoReturn:
  if isinstance(exc, FatalProviderError):
    raise HTTPException(status_code=_FATAL_HTTP_STATUS[exc.reason], detail=exc.message) from exc
  raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc


@router.post("/generate", response_model=ImageGenerateResponse)
async def generate_image(request: ImageGenerateRequest, provider_factory: Annotated[ProviderFactory, Depends(get_provider_factory)]) -> ImageGenerateResponse:
  """Generate one coloring page and return it inline."""
  try:
    provider = provider_factory(request.model or "")
  except ValueError as exc:
    logger.error("Image provider unavailable: %s", exc)
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Image provider is not configured.") from exc

  try:
    result = await provider.generate(build_coloring_page_prompt(request.prompt))
  except ImageProviderError as exc:
    _raise_for_provider_error(exc)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

  if not result.usable:
    raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="No image was generated")
  return ImageGenerateResponse(image_url=result.image_url, text=result.text)


@router.post("/imagine", response_model=ImagineResponse, status_code=status.HTTP_202_ACCEPTED)
async def imagine(request: ImageGenerateRequest, provider: Annotated[AsyncImageProvider, Depends(get_async_task_provider)]) -> ImagineResponse:
  """Start an asynchronous generation task; poll `/tasks/{task_id}` for the result."""
  try:
    task_id = await provider.submit(request.prompt)
  except ImageProviderError as exc:
    _raise_for_provider_error(exc)
  logger.info("Started %s task %s", provider.name, task_id)
  return ImagineResponse(task_id=task_id)


@router.get("/tasks/{task_id}", response_model=ImageTaskStatusResponse)
async def get_image_task(task_id: str, provider: Annotated[AsyncImageProvider, Depends(get_async_task_provider)]) -> ImageTaskStatusResponse:
  try:
    task = await provider.get_status(task_id)
  except ImageProviderError as exc:
    _raise_for_provider_error(exc)
  return ImageTaskStatusResponse(task_id=task.task_id, status=task.status, progress=task.progress, image_url=task.image_url, error=task.error)
