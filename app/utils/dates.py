"""Academic calendar helpers shared by exports and backups."""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Literal

Semester = Literal["Ganjil", "Genap"]

SEMESTERS: tuple[Semester, ...] = ("Ganjil", "Genap")


@dataclass(frozen=True)
class DateRange:
  """Inclusive calendar date window."""

  start: datetime.date
  end: datetime.date

  def __post_init__(self) -> None:
    if self.start > self.end:
      raise ValueError(f"Date range start {self.start.isoformat()} is after end {self.end.isoformat()}.")

  @property
  def days(self) -> int:
    return (self.end - self.start).days + 1

  def as_dict(self) -> dict[str, str | int]:
    return {"start": self.start.isoformat(), "end": self.end.isoformat(), "days": self.days}


def normalize_semester(value: str) -> Semester:
  """Accept case variations of the two semester names."""
  normalized = value.strip().capitalize()
  if normalized not in SEMESTERS:
    raise ValueError(f"Semester must be one of {', '.join(SEMESTERS)}, got {value!r}.")
  return normalized  # type: ignore[return-value]


def resolve_semester_range(semester: str, year: int) -> DateRange:
  """Ganjil covers Jul 1 to Dec 31 of `year`; Genap covers Jan 1 to Jun 30."""
  if normalize_semester(semester) == "Ganjil":
    return DateRange(datetime.date(year, 7, 1), datetime.date(year, 12, 31))
  return DateRange(datetime.date(year, 1, 1), datetime.date(year, 6, 30))


def current_semester(today: datetime.date | None = None) -> tuple[Semester, int]:
  """Return the semester containing `today`."""
  today = today or datetime.date.today()
  return ("Ganjil" if today.month >= 7 else "Genap"), today.year


def subtract_months(value: datetime.date, months: int) -> datetime.date:
  """Shift a date back by whole months, clamping to the target month's last day."""
  month_index = value.year * 12 + (value.month - 1) - months
  year, month = divmod(month_index, 12)
  month += 1
  next_month_first = datetime.date(year + (month // 12), (month % 12) + 1, 1)
  last_day = (next_month_first - datetime.timedelta(days=1)).day
  return datetime.date(year, month, min(value.day, last_day))
