from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, field_validator, model_validator
from pydantic.alias_generators import to_camel

from colorbook.jobs.models import JobStatus

# Wire format is camelCase; Python attributes stay snake_case.
_CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_CAMEL_REQUEST_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ExportTriggerRequest(BaseModel):
  """Body accepted by the export trigger.

  `{bookId, bookTitle}` starts an export, `{jobId}` resumes one, and
  `{jobId, isInternalCall: true, cursor}` processes the next unit.
  """

  book_id: StrictStr | None = Field(default=None, min_length=1)
  book_title: StrictStr | None = None
  job_id: StrictStr | None = Field(default=None, min_length=1)
  is_internal_call: StrictBool = False
  cursor: StrictInt | None = Field(default=None, ge=0, description="Offset the continuation was scheduled for.")
  model_config = _CAMEL_REQUEST_CONFIG

  @model_validator(mode="after")
  def validate_shape(self) -> ExportTriggerRequest:
    if self.is_internal_call and not self.job_id:
      raise ValueError("jobId is required for internal calls.")
    if not self.is_internal_call and not (self.book_id or self.job_id):
      raise ValueError("bookId or jobId is required.")
    return self


class ExportJobCreateResponse(BaseModel):
  """Response for starting (or attaching to) an export."""

  job_id: StrictStr
  status: Literal["processing"] = "processing"
  total_units: StrictInt
  resumed: bool = False
  model_config = _CAMEL_CONFIG


class ExportJobStatusResponse(BaseModel):
  """Status payload for an export job."""

  job_id: StrictStr
  book_id: StrictStr
  book_title: StrictStr
  status: JobStatus
  total_units: StrictInt
  processed_units: StrictInt
  failed_units: StrictInt
  current_offset: StrictInt
  download_url: StrictStr | None = None
  error_message: StrictStr | None = None
  created_at: datetime | None = None
  updated_at: datetime | None = None
  completed_at: datetime | None = None
  model_config = _CAMEL_CONFIG


class ActiveExportResponse(BaseModel):
  """Active export lookup; `job` is null when nothing is running for the book."""

  job: ExportJobStatusResponse | None = None
  model_config = _CAMEL_CONFIG


class GenerationJobCreateRequest(BaseModel):
  """Request payload for a batch generation job."""

  book_id: StrictStr = Field(min_length=1)
  prompts: list[StrictStr] = Field(min_length=1)
  model: StrictStr | None = None
  border: StrictStr = "none"
  add_bleed: StrictBool = False
  notify_email: StrictStr | None = None
  model_config = _CAMEL_REQUEST_CONFIG

  @field_validator("prompts")
  @classmethod
  def normalize_prompts(cls, value: list[str]) -> list[str]:
    cleaned = [prompt.strip() for prompt in value if prompt.strip()]
    if not cleaned:
      raise ValueError("At least one non-empty prompt is required.")
    return cleaned

  @field_validator("notify_email")
  @classmethod
  def normalize_email(cls, value: str | None) -> str | None:
    if value is None or not value.strip():
      return None
    cleaned = value.strip()
    if "@" not in cleaned:
      raise ValueError("notifyEmail must be an email address.")
    return cleaned


class GenerationJobResponse(BaseModel):
  """Status payload for a generation job."""

  job_id: StrictStr
  book_id: StrictStr
  status: JobStatus
  total_count: StrictInt
  completed_count: StrictInt
  failed_count: StrictInt
  skipped_count: StrictInt
  model: StrictStr
  border: StrictStr
  add_bleed: bool
  error_message: StrictStr | None = None
  created_at: datetime | None = None
  updated_at: datetime | None = None
  completed_at: datetime | None = None
  model_config = _CAMEL_CONFIG


class GenerationJobListResponse(BaseModel):
  jobs: list[GenerationJobResponse]
  model_config = _CAMEL_CONFIG


class GenerationTaskRequest(BaseModel):
  """Internal continuation for one prompt of a generation job."""

  job_id: StrictStr = Field(min_length=1)
  prompt_index: StrictInt = Field(ge=0)
  model_config = _CAMEL_REQUEST_CONFIG


class StagingSweepResponse(BaseModel):
  scanned_jobs: StrictInt
  deleted_objects: StrictInt
  model_config = _CAMEL_CONFIG


class ImageGenerateRequest(BaseModel):
  """Single coloring page request."""

  prompt: StrictStr = Field(min_length=1, max_length=2000)
  model: StrictStr | None = None
  model_config = _CAMEL_REQUEST_CONFIG


class ImageGenerateResponse(BaseModel):
  status: Literal["completed"] = "completed"
  image_url: StrictStr
  text: StrictStr | None = None
  model_config = _CAMEL_CONFIG


class ImagineResponse(BaseModel):
  task_id: StrictStr
  status: Literal["processing"] = "processing"
  model_config = _CAMEL_CONFIG


class ImageTaskStatusResponse(BaseModel):
  task_id: StrictStr
  status: Literal["processing", "completed", "failed"]
  progress: StrictInt
  image_url: StrictStr | None = None
  error: StrictStr | None = None
  model_config = _CAMEL_CONFIG
