"""Domain models for queued spreadsheet export jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

JobState = Literal["queued", "active", "completed", "failed"]
JobCategory = Literal["download", "report-generation"]
JobType = Literal["student-attendance", "teacher-attendance", "analytics-report", "semester-report"]

TERMINAL_STATES: frozenset[str] = frozenset({"completed", "failed"})

JOB_CATEGORIES: tuple[JobCategory, ...] = ("download", "report-generation")

# Each job type runs in exactly one category's worker pool.
CATEGORY_BY_JOB_TYPE: dict[str, JobCategory] = {
  "student-attendance": "download",
  "teacher-attendance": "download",
  "analytics-report": "download",
  "semester-report": "report-generation",
}

# Lower values dispatch sooner; unknown roles fall back to the least urgent value.
ROLE_PRIORITIES: dict[str, int] = {"admin": 1, "guru": 2, "teacher": 2, "siswa": 3, "student": 3}
DEFAULT_PRIORITY = 3


def priority_for_role(role: str | None) -> int:
  """Map a submitter role onto a queue priority value."""
  if not role:
    return DEFAULT_PRIORITY
  return ROLE_PRIORITIES.get(role.strip().lower(), DEFAULT_PRIORITY)


@dataclass
class JobRecord:
  """Represents one background spreadsheet job and its lifecycle state."""

  job_id: str
  category: JobCategory
  job_type: JobType
  payload: dict[str, Any]
  priority: int
  sequence: int
  max_attempts: int
  created_at: float
  updated_at: float
  user_id: str | None = None
  user_role: str | None = None
  state: JobState = "queued"
  progress: int = 0
  attempts: int = 0
  stalled: bool = False
  retry_at: float | None = None
  started_at: float | None = None
  finished_at: float | None = None
  result: dict[str, Any] | None = None
  error: str | None = None
  errors: list[str] = field(default_factory=list)

  @property
  def is_terminal(self) -> bool:
    return self.state in TERMINAL_STATES


@dataclass(frozen=True)
class JobHandle:
  """Returned from submission so callers can poll the job."""

  job_id: str
  category: JobCategory
  job_type: JobType
  state: JobState
  priority: int
  queue_position: int | None
  estimated_seconds: int | None


@dataclass(frozen=True)
class JobStatusView:
  """Read-only snapshot of a job for status polling."""

  job_id: str
  category: JobCategory
  job_type: JobType
  state: JobState
  progress: int
  attempts: int
  max_attempts: int
  priority: int
  stalled: bool
  created_at: float
  started_at: float | None
  finished_at: float | None
  result: dict[str, Any] | None
  error: str | None
  queue_position: int | None = None
  retry_at: float | None = None
