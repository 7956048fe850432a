from __future__ import annotations

import datetime

import pytest

from app.utils.dates import DateRange, current_semester, normalize_semester, resolve_semester_range, subtract_months
from app.utils.ids import generate_backup_id, generate_nanoid, is_safe_identifier, sanitize_name


def test_semester_ranges() -> None:
  assert resolve_semester_range("Ganjil", 2025) == DateRange(datetime.date(2025, 7, 1), datetime.date(2025, 12, 31))
  assert resolve_semester_range("GENAP", 2026) == DateRange(datetime.date(2026, 1, 1), datetime.date(2026, 6, 30))


def test_current_semester_switches_in_july() -> None:
  assert current_semester(datetime.date(2025, 6, 30)) == ("Genap", 2025)
  assert current_semester(datetime.date(2025, 7, 1)) == ("Ganjil", 2025)


def test_unknown_semester_is_rejected() -> None:
  with pytest.raises(ValueError):
    normalize_semester("Pendek")


def test_date_range_rejects_reversed_bounds() -> None:
  with pytest.raises(ValueError):
    DateRange(datetime.date(2025, 2, 1), datetime.date(2025, 1, 1))
  assert DateRange(datetime.date(2025, 1, 1), datetime.date(2025, 1, 1)).as_dict() == {"start": "2025-01-01", "end": "2025-01-01", "days": 1}


@pytest.mark.parametrize(
  ("value", "months", "expected"),
  [
    (datetime.date(2026, 10, 18), 24, datetime.date(2024, 10, 18)),
    (datetime.date(2025, 3, 31), 1, datetime.date(2025, 2, 28)),
    (datetime.date(2024, 3, 31), 1, datetime.date(2024, 2, 29)),
    (datetime.date(2025, 1, 15), 13, datetime.date(2023, 12, 15)),
  ],
)
def test_subtract_months_clamps_to_month_end(value: datetime.date, months: int, expected: datetime.date) -> None:
  assert subtract_months(value, months) == expected


def test_backup_ids_carry_their_kind() -> None:
  moment = datetime.datetime(2025, 8, 4, 7, 30, 15, 123456, tzinfo=datetime.UTC)
  assert generate_backup_id("semester", moment=moment) == "semester_backup_2025-08-04T07-30-15-123456Z"
  assert generate_backup_id("date-range", moment=moment).startswith("date_backup_")
  assert generate_backup_id("scheduled", schedule_name="weekly full", moment=moment) == "scheduled_weekly-full_2025-08-04T07-30-15-123456Z"
  with pytest.raises(ValueError):
    generate_backup_id("hourly", moment=moment)


def test_identifier_safety() -> None:
  assert is_safe_identifier("semester_backup_2025-08-04T07-30-15-123456Z")
  assert is_safe_identifier("absensi_siswa_2025-08-01.xlsx")
  assert not is_safe_identifier("../etc/passwd")
  assert not is_safe_identifier("..")
  assert not is_safe_identifier("a/b")
  assert not is_safe_identifier("")


def test_names_and_nanoids() -> None:
  assert sanitize_name("  !!  ") == "unnamed"
  assert sanitize_name("Semester Ganjil/2025") == "Semester-Ganjil-2025"
  token = generate_nanoid(8)
  assert len(token) == 8
  assert token.isalnum()
