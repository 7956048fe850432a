"""Spreadsheet exports rendered from seeded attendance data."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
from openpyxl import load_workbook

from app.core.exceptions import JobValidationError
from app.jobs.worker import JobQueueService
from app.services.report_renderer import DOWNLOAD_URL_PREFIX, ReportRenderer, build_report_registry

AUGUST = {"start_date": "2025-08-01", "end_date": "2025-08-31"}


@pytest.fixture
def renderer(seeded_factory, tmp_path: Path) -> ReportRenderer:
  return ReportRenderer(seeded_factory, tmp_path / "downloads")


@pytest.mark.anyio
async def test_student_export_reports_progress_and_rows(renderer: ReportRenderer) -> None:
  seen: list[float] = []
  result = await renderer.render("student-attendance", AUGUST, progress=seen.append)

  assert seen == [10, 30, 50, 70, 90, 100]
  assert result.row_count == 3
  assert result.filename.startswith("absensi_siswa_2025-08-01_2025-08-31_")
  assert result.path.parent == renderer.download_dir
  assert result.file_size == result.path.stat().st_size

  ws = load_workbook(result.path)["Absensi Siswa"]
  assert ws["A1"].value == "Tanggal"
  assert ws.max_row == 4
  names = {ws.cell(row=row, column=3).value for row in range(2, 5)}
  assert names == {"Andi Pratama", "Citra O'Neil", "Dewi Lestari"}


@pytest.mark.anyio
async def test_class_and_teacher_filters(renderer: ReportRenderer) -> None:
  students = await renderer.render("student-attendance", {**AUGUST, "kelas_id": 2})
  teachers = await renderer.render("teacher-attendance", {**AUGUST, "guru_id": 1})
  assert students.row_count == 1
  assert teachers.row_count == 1
  assert teachers.filename.startswith("absensi_guru_")


@pytest.mark.anyio
async def test_empty_range_still_produces_a_headed_workbook(renderer: ReportRenderer) -> None:
  result = await renderer.render("student-attendance", {"start_date": "2019-01-01", "end_date": "2019-01-31"})

  assert result.row_count == 0
  ws = load_workbook(result.path).active
  assert ws.max_row == 1
  assert ws["B1"].value == "NIS"


@pytest.mark.anyio
async def test_analytics_and_semester_reports(renderer: ReportRenderer) -> None:
  analytics = await renderer.render("analytics-report", {"semester": "Ganjil", "year": 2025})
  assert analytics.row_count == 5
  assert analytics.filename.startswith("analytics_report_2025-07-01_2025-12-31_")

  semester = await renderer.render("semester-report", {"semester": "ganjil", "year": 2025})
  assert semester.filename.startswith("semester_report_Ganjil_2025_")
  workbook = load_workbook(semester.path)
  assert workbook.sheetnames == ["Student Attendance", "Teacher Attendance", "Permission Requests", "Analytics Summary"]
  assert workbook["Student Attendance"]["A1"].value.startswith("Absensi Siswa (2025-07-01")


@pytest.mark.anyio
async def test_mismatched_payload_is_rejected(renderer: ReportRenderer) -> None:
  with pytest.raises(JobValidationError):
    await renderer.render("teacher-attendance", {**AUGUST, "type": "student-attendance"})


@pytest.mark.anyio
async def test_queue_renders_job_end_to_end(renderer: ReportRenderer, settings) -> None:
  service = JobQueueService(registry=build_report_registry(renderer), settings=replace(settings, download_dir=str(renderer.download_dir)))
  await service.start()
  try:
    handle = await service.submit("download", "student-attendance", AUGUST, user_role="guru")
    view = await service.wait_for(handle.job_id, timeout=10)
  finally:
    await service.stop()

  assert view.state == "completed"
  assert view.progress == 100
  assert view.result["row_count"] == 3
  assert view.result["download_url"] == f"{DOWNLOAD_URL_PREFIX}/{view.result['filename']}"
  assert Path(view.result["file_path"]).is_file()
