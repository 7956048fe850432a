"""Spreadsheet rendering for export jobs and backup bundles."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.jobs.dispatch import JobProcessorRegistry
from app.jobs.models import CATEGORY_BY_JOB_TYPE, JobRecord
from app.jobs.payloads import AnalyticsReportPayload, JobPayload, SemesterReportPayload, StudentAttendancePayload, TeacherAttendancePayload, parse_job_payload
from app.jobs.progress import ProgressSink, noop_progress
from app.services import report_queries as queries
from app.utils.dates import DateRange
from app.utils.ids import filename_timestamp, generate_nanoid
from app.utils.workbook import ColumnSpec, SheetStyle, new_workbook, write_table_sheet

logger = logging.getLogger(__name__)

DOWNLOAD_URL_PREFIX = "/v1/downloads/files"

SHEET_STUDENT_ATTENDANCE = "Student Attendance"
SHEET_TEACHER_ATTENDANCE = "Teacher Attendance"
SHEET_PERMISSION_REQUESTS = "Permission Requests"
SHEET_ANALYTICS_SUMMARY = "Analytics Summary"
SHEET_SYSTEM_CONFIGURATION = "System Configuration"


@dataclass(frozen=True)
class RenderResult:
  """A finished spreadsheet on disk."""

  path: Path
  filename: str
  row_count: int
  file_size: int


@dataclass(frozen=True)
class _Table:
  columns: tuple[ColumnSpec, ...]
  rows: list[dict[str, Any]]
  title: str | None = None


@dataclass(frozen=True)
class _Sheet:
  name: str
  tables: tuple[_Table, ...]


def _file_stamp() -> str:
  return f"{filename_timestamp()}_{generate_nanoid(8)}"


def _write_sheets(workbook: Workbook, sheets: list[_Sheet], *, style: SheetStyle) -> dict[str, int]:
  counts: dict[str, int] = {}
  for sheet in sheets:
    ws = workbook.create_sheet(title=sheet.name)
    total = 0
    for index, table in enumerate(sheet.tables):
      if index > 0:
        ws.append([])
      # Only a single-table sheet gets a frozen header; stacked tables would freeze mid-sheet.
      total += write_table_sheet(ws, table.columns, table.rows, style=style, title=table.title, freeze=len(sheet.tables) == 1)
    counts[sheet.name] = total
  return counts


def _build_workbook(sheets: list[_Sheet], *, style: SheetStyle) -> tuple[Workbook, dict[str, int]]:
  workbook = new_workbook()
  counts = _write_sheets(workbook, sheets, style=style)
  return workbook, counts


def _save_workbook(workbook: Workbook, path: Path) -> int:
  path.parent.mkdir(parents=True, exist_ok=True)
  partial_path = path.with_name(path.name + ".partial")
  try:
    workbook.save(partial_path)
  except BaseException:
    partial_path.unlink(missing_ok=True)
    raise
  partial_path.replace(path)
  return path.stat().st_size


def _period_title(label: str, date_range: DateRange | None) -> str:
  if date_range is None:
    return f"{label} (semua tanggal)"
  return f"{label} ({date_range.start.isoformat()} s/d {date_range.end.isoformat()})"


async def _collect_export_sheets(session: AsyncSession, date_range: DateRange | None, *, include_configuration: bool) -> list[_Sheet]:
  """Gather the multi-sheet export shared by semester reports and backups."""
  students = await queries.fetch_rows(session, queries.student_attendance_query(date_range))
  teachers = await queries.fetch_rows(session, queries.teacher_attendance_query(date_range))
  permissions = await queries.fetch_rows(session, queries.permission_request_query(date_range))
  metrics = await queries.fetch_overview_metrics(session, date_range)
  status_counts = await queries.fetch_status_counts(session, date_range)

  sheets = [
    _Sheet(SHEET_STUDENT_ATTENDANCE, (_Table(queries.STUDENT_ATTENDANCE_COLUMNS, students, _period_title("Absensi Siswa", date_range)),)),
    _Sheet(SHEET_TEACHER_ATTENDANCE, (_Table(queries.TEACHER_ATTENDANCE_COLUMNS, teachers, _period_title("Absensi Guru", date_range)),)),
    _Sheet(SHEET_PERMISSION_REQUESTS, (_Table(queries.PERMISSION_REQUEST_COLUMNS, permissions, _period_title("Pengajuan Izin Siswa", date_range)),)),
    _Sheet(
      SHEET_ANALYTICS_SUMMARY,
      (
        _Table(queries.METRIC_COLUMNS, metrics, _period_title("Ringkasan", date_range)),
        _Table(queries.STATUS_SUMMARY_COLUMNS, status_counts, "Rekap Status Kehadiran"),
      ),
    ),
  ]
  if include_configuration:
    configuration = await queries.fetch_system_configuration(session)
    sheets.append(
      _Sheet(
        SHEET_SYSTEM_CONFIGURATION,
        (
          _Table(queries.USER_COLUMNS, configuration["users"], "Pengguna"),
          _Table(queries.CLASS_COLUMNS, configuration["classes"], "Kelas"),
          _Table(queries.SUBJECT_COLUMNS, configuration["subjects"], "Mata Pelajaran"),
        ),
      )
    )
  return sheets


async def render_backup_workbook(session_factory: async_sessionmaker[AsyncSession], path: Path, date_range: DateRange | None) -> dict[str, int]:
  """Write the backup spreadsheet and return row counts per sheet."""
  async with session_factory() as session:
    sheets = await _collect_export_sheets(session, date_range, include_configuration=True)
  workbook, counts = await asyncio.to_thread(_build_workbook, sheets, style="backup")
  await asyncio.to_thread(_save_workbook, workbook, path)
  logger.info("Backup spreadsheet written to %s (%s)", path, counts)
  return counts


class ReportRenderer:
  """Turns a validated job payload into an .xlsx file inside `download_dir`."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession], download_dir: Path) -> None:
    self._session_factory = session_factory
    self._download_dir = Path(download_dir)

  @property
  def download_dir(self) -> Path:
    return self._download_dir

  async def render(self, job_type: str, filters: JobPayload | Mapping[str, Any], progress: ProgressSink = noop_progress) -> RenderResult:
    payload = filters if not isinstance(filters, Mapping) else parse_job_payload(CATEGORY_BY_JOB_TYPE.get(job_type, ""), job_type, dict(filters))
    if payload.type != job_type:
      raise ValueError(f"Payload for {payload.type} cannot render {job_type}.")
    progress(10)

    async with self._session_factory() as session:
      match payload:
        case StudentAttendancePayload():
          date_range = payload.date_range
          stmt = queries.student_attendance_query(date_range, class_id=payload.class_id)
          progress(30)
          rows = await queries.fetch_rows(session, stmt)
          sheets = [_Sheet("Absensi Siswa", (_Table(queries.STUDENT_ATTENDANCE_COLUMNS, rows),))]
          filename = f"absensi_siswa_{date_range.start.isoformat()}_{date_range.end.isoformat()}_{_file_stamp()}.xlsx"
        case TeacherAttendancePayload():
          date_range = payload.date_range
          stmt = queries.teacher_attendance_query(date_range, teacher_id=payload.teacher_id)
          progress(30)
          rows = await queries.fetch_rows(session, stmt)
          sheets = [_Sheet("Absensi Guru", (_Table(queries.TEACHER_ATTENDANCE_COLUMNS, rows),))]
          filename = f"absensi_guru_{date_range.start.isoformat()}_{date_range.end.isoformat()}_{_file_stamp()}.xlsx"
        case AnalyticsReportPayload():
          date_range = payload.date_range
          progress(30)
          rows = await queries.fetch_status_counts(session, date_range)
          sheets = [_Sheet("Analytics", (_Table(queries.STATUS_SUMMARY_COLUMNS, rows),))]
          filename = f"analytics_report_{date_range.start.isoformat()}_{date_range.end.isoformat()}_{_file_stamp()}.xlsx"
        case SemesterReportPayload():
          progress(30)
          sheets = await _collect_export_sheets(session, payload.date_range, include_configuration=False)
          filename = f"semester_report_{payload.semester}_{payload.year}_{_file_stamp()}.xlsx"
        case _:
          raise ValueError(f"Unsupported job type: {job_type}")
    progress(50)

    progress(70)
    workbook, counts = await asyncio.to_thread(_build_workbook, sheets, style="download")
    progress(90)

    path = self._download_dir / filename
    file_size = await asyncio.to_thread(_save_workbook, workbook, path)
    progress(100)
    row_count = sum(counts.values())
    logger.info("Rendered %s to %s (%d rows, %d bytes)", job_type, path, row_count, file_size)
    return RenderResult(path=path, filename=filename, row_count=row_count, file_size=file_size)


class ReportJobHandler:
  """Job handler that renders one spreadsheet per attempt."""

  def __init__(self, renderer: ReportRenderer) -> None:
    self._renderer = renderer

  async def process(self, job: JobRecord, progress: ProgressSink) -> dict[str, Any]:
    payload = parse_job_payload(job.category, job.job_type, job.payload)
    result = await self._renderer.render(job.job_type, payload, progress)
    return {
      "file_path": str(result.path),
      "filename": result.filename,
      "row_count": result.row_count,
      "file_size": result.file_size,
      "download_url": f"{DOWNLOAD_URL_PREFIX}/{result.filename}",
    }


def build_report_registry(renderer: ReportRenderer) -> JobProcessorRegistry:
  """Registry routing every export job type to the spreadsheet handler."""
  handler = ReportJobHandler(renderer)
  return JobProcessorRegistry({job_type: handler for job_type in CATEGORY_BY_JOB_TYPE})
