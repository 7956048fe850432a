"""Typed job payloads, one variant per job type."""

from __future__ import annotations

import datetime
from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, TypeAdapter, ValidationError, field_validator, model_validator

from app.core.exceptions import JobValidationError
from app.jobs.models import CATEGORY_BY_JOB_TYPE
from app.utils.dates import DateRange, Semester, normalize_semester, resolve_semester_range


class _AttendanceRangePayload(BaseModel):
  """Shared date window for attendance exports."""

  start_date: datetime.date = Field(validation_alias=AliasChoices("start_date", "tanggal_mulai"), description="First day included in the export (tanggal_mulai).")
  end_date: datetime.date = Field(validation_alias=AliasChoices("end_date", "tanggal_selesai"), description="Last day included in the export (tanggal_selesai).")
  model_config = ConfigDict(extra="forbid")

  @model_validator(mode="after")
  def check_range(self) -> _AttendanceRangePayload:
    if self.start_date > self.end_date:
      raise ValueError("start_date must not be after end_date.")
    return self

  @property
  def date_range(self) -> DateRange:
    return DateRange(self.start_date, self.end_date)


class StudentAttendancePayload(_AttendanceRangePayload):
  type: Literal["student-attendance"] = "student-attendance"
  class_id: StrictInt | None = Field(default=None, validation_alias=AliasChoices("class_id", "kelas_id"), description="Optional kelas id filter.")


class TeacherAttendancePayload(_AttendanceRangePayload):
  type: Literal["teacher-attendance"] = "teacher-attendance"
  teacher_id: StrictInt | None = Field(default=None, validation_alias=AliasChoices("teacher_id", "guru_id"), description="Optional guru id filter.")


class _SemesterPayload(BaseModel):
  semester: Semester = Field(description="Ganjil (Jul-Dec) or Genap (Jan-Jun).")
  year: int = Field(validation_alias=AliasChoices("year", "tahun"), ge=2000, le=2100, description="Calendar year the semester falls in.")
  model_config = ConfigDict(extra="forbid")

  @field_validator("semester", mode="before")
  @classmethod
  def normalize(cls, value: Any) -> Any:
    if isinstance(value, str):
      return normalize_semester(value)
    return value

  @property
  def date_range(self) -> DateRange:
    return resolve_semester_range(self.semester, self.year)


class AnalyticsReportPayload(_SemesterPayload):
  type: Literal["analytics-report"] = "analytics-report"


class SemesterReportPayload(_SemesterPayload):
  type: Literal["semester-report"] = "semester-report"


JobPayload = Annotated[StudentAttendancePayload | TeacherAttendancePayload | AnalyticsReportPayload | SemesterReportPayload, Field(discriminator="type")]

_PAYLOAD_ADAPTER: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_job_payload(category: str, job_type: str, payload: dict[str, Any] | None) -> JobPayload:
  """Validate a raw payload for `job_type`, raising JobValidationError on any mismatch."""
  expected_category = CATEGORY_BY_JOB_TYPE.get(job_type)
  if expected_category is None:
    raise JobValidationError(f"Unsupported job type: {job_type}")
  if expected_category != category:
    raise JobValidationError(f"Job type '{job_type}' belongs to category '{expected_category}', not '{category}'.")
  if payload is not None and not isinstance(payload, dict):
    raise JobValidationError("Job payload must be an object.")

  data = dict(payload or {})
  declared = data.pop("type", job_type)
  if declared != job_type:
    raise JobValidationError(f"Payload type '{declared}' does not match job type '{job_type}'.")

  try:
    return _PAYLOAD_ADAPTER.validate_python({**data, "type": job_type})
  except ValidationError as exc:
    raise JobValidationError(f"Invalid payload for {job_type}.", errors=exc.errors()) from exc
