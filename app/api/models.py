from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictStr

from app.jobs.models import JobCategory, JobHandle, JobState, JobStatusView, JobType


class JobSubmitRequest(BaseModel):
  """Request payload for queueing a spreadsheet export."""

  category: JobCategory = Field(description="Worker pool the job runs in (download or report-generation).")
  job_type: JobType = Field(validation_alias=AliasChoices("job_type", "type"), description="Spreadsheet to render.")
  payload: dict[str, Any] = Field(default_factory=dict, description="Type-specific filters; validated against the job type.")
  user_id: StrictStr | None = Field(default=None, description="Submitting user, for auditing.")
  user_role: StrictStr | None = Field(default=None, description="Submitter role; decides the queue priority.", examples=["admin", "guru", "siswa"])
  model_config = ConfigDict(extra="forbid")


class JobHandleResponse(BaseModel):
  """Acknowledgement returned once a job is queued."""

  job_id: str
  category: JobCategory
  job_type: JobType
  state: JobState
  priority: int
  queue_position: int | None
  estimated_seconds: int | None

  @classmethod
  def from_handle(cls, handle: JobHandle) -> JobHandleResponse:
    return cls(
      job_id=handle.job_id,
      category=handle.category,
      job_type=handle.job_type,
      state=handle.state,
      priority=handle.priority,
      queue_position=handle.queue_position,
      estimated_seconds=handle.estimated_seconds,
    )


class JobStatusResponse(BaseModel):
  """Status snapshot returned by the polling endpoint."""

  job_id: str
  category: JobCategory
  job_type: JobType
  state: JobState
  progress: int
  attempts: int
  max_attempts: int
  priority: int
  stalled: bool
  queue_position: int | None = None
  retry_at: float | None = None
  created_at: float
  started_at: float | None = None
  finished_at: float | None = None
  result: dict[str, Any] | None = None
  error: str | None = None

  @classmethod
  def from_view(cls, view: JobStatusView) -> JobStatusResponse:
    return cls(
      job_id=view.job_id,
      category=view.category,
      job_type=view.job_type,
      state=view.state,
      progress=view.progress,
      attempts=view.attempts,
      max_attempts=view.max_attempts,
      priority=view.priority,
      stalled=view.stalled,
      queue_position=view.queue_position,
      retry_at=view.retry_at,
      created_at=view.created_at,
      started_at=view.started_at,
      finished_at=view.finished_at,
      result=view.result,
      error=view.error,
    )


class ArchiveRequest(BaseModel):
  """Manual archive trigger."""

  months: int | None = Field(default=None, ge=1, le=240, description="Archive rows older than this many months; defaults to the configured age.")
  prune_live: bool = Field(default=False, description="Delete live rows after they are safely archived.")
  model_config = ConfigDict(extra="forbid")
