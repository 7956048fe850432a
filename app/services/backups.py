"""Backup orchestration: dump, spreadsheet, archive, manifest and packaging.

How/Why:
- Steps run strictly in order inside one call; a backup is never queued.
- Steps that produce the core artifacts (range, dump, spreadsheet, manifest)
  are fatal and remove the partial directory so no manifest ever describes
  files that are not there.
- Archive and compression are best-effort and only logged on failure.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config import Settings
from app.core.exceptions import BackupStepError, NotFoundError
from app.schema.sql import AbsensiGuru, AbsensiSiswa, Kelas, User
from app.services import report_queries as queries
from app.services.checksums import BackupManifest, build_manifest, manifest_filename, read_manifest, write_manifest
from app.services.maintenance import ArchiveReport, archive_cutoff, archive_old_data
from app.services.report_renderer import render_backup_workbook
from app.services.sql_dump import DumpResult, write_sql_dump
from app.utils.compression import zip_directory
from app.utils.dates import DateRange, current_semester, normalize_semester, resolve_semester_range
from app.utils.ids import generate_backup_id, is_safe_identifier

logger = logging.getLogger(__name__)

BackupKind = Literal["semester", "date-range", "scheduled"]

SQL_SUFFIX = ".sql"
EXPORT_SUFFIX = "_export.xlsx"
ARCHIVE_REPORT_SUFFIX = "_archive_report.json"
ZIP_SUFFIX = ".zip"


@dataclass(frozen=True)
class SemesterBackupSpec:
  """Backup of one semester; both fields default to the semester containing today."""

  semester: str | None = None
  year: int | None = None
  kind: BackupKind = field(default="semester", init=False)


@dataclass(frozen=True)
class DateRangeBackupSpec:
  start_date: datetime.date
  end_date: datetime.date
  kind: BackupKind = field(default="date-range", init=False)


@dataclass(frozen=True)
class ScheduledBackupSpec:
  name: str = "default"
  kind: BackupKind = field(default="scheduled", init=False)


BackupSpec = SemesterBackupSpec | DateRangeBackupSpec | ScheduledBackupSpec


@dataclass(frozen=True)
class BackupSummary:
  """One entry of the backup listing, merged from directory and zip."""

  backup_id: str
  backup_type: str
  created_at: datetime.datetime
  size_bytes: int
  has_directory: bool
  has_archive: bool
  scope: dict[str, Any] = field(default_factory=dict)
  statistics: dict[str, Any] = field(default_factory=dict)

  def to_dict(self) -> dict[str, Any]:
    return {
      "backupId": self.backup_id,
      "type": self.backup_type,
      "timestamp": self.created_at.isoformat(),
      "sizeBytes": self.size_bytes,
      "hasDirectory": self.has_directory,
      "hasArchive": self.has_archive,
      "scope": self.scope,
      "statistics": self.statistics,
    }


def _utc_now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def _directory_size(path: Path) -> int:
  return sum(item.stat().st_size for item in path.rglob("*") if item.is_file())


def _infer_backup_type(backup_id: str) -> str:
  if backup_id.startswith("semester_backup_"):
    return "semester"
  if backup_id.startswith("date_backup_"):
    return "date-range"
  if backup_id.startswith("scheduled_"):
    return "scheduled"
  return "unknown"


def _parse_timestamp(raw: str) -> datetime.datetime | None:
  try:
    parsed = datetime.datetime.fromisoformat(raw)
  except ValueError:
    return None
  return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=datetime.UTC)


def resolve_backup_scope(spec: BackupSpec, *, today: datetime.date | None = None) -> tuple[DateRange | None, dict[str, Any]]:
  """Turn a backup spec into its date window and the manifest scope block."""
  match spec:
    case SemesterBackupSpec():
      default_semester, default_year = current_semester(today)
      semester = normalize_semester(spec.semester) if spec.semester else default_semester
      year = spec.year if spec.year is not None else default_year
      date_range = resolve_semester_range(semester, year)
      return date_range, {"semester": semester, "year": year, "startDate": date_range.start.isoformat(), "endDate": date_range.end.isoformat()}
    case DateRangeBackupSpec():
      date_range = DateRange(spec.start_date, spec.end_date)
      return date_range, {"startDate": date_range.start.isoformat(), "endDate": date_range.end.isoformat(), "days": date_range.days}
    case ScheduledBackupSpec():
      return None, {"schedule": spec.name}
  raise ValueError(f"Unsupported backup spec: {spec!r}")


class BackupOrchestrator:
  """Creates, lists and removes backups under `settings.backup_dir`."""

  def __init__(self, *, engine: AsyncEngine, session_factory: async_sessionmaker[AsyncSession], settings: Settings, clock: Callable[[], datetime.datetime] = _utc_now) -> None:
    self._engine = engine
    self._session_factory = session_factory
    self._settings = settings
    self._clock = clock

  @property
  def backup_dir(self) -> Path:
    return Path(self._settings.backup_dir)

  async def create_backup(self, spec: BackupSpec) -> BackupManifest:
    moment = self._clock()
    schedule_name = spec.name if isinstance(spec, ScheduledBackupSpec) else None
    backup_id = generate_backup_id(spec.kind, schedule_name=schedule_name, moment=moment)
    target_dir = self.backup_dir / backup_id

    try:
      date_range, scope = resolve_backup_scope(spec, today=moment.date())
    except ValueError as exc:
      raise BackupStepError("resolve_range", str(exc)) from exc

    target_dir.mkdir(parents=True, exist_ok=False)
    logger.info("Backup %s started (type=%s, scope=%s)", backup_id, spec.kind, scope)
    try:
      dump = await self._run_step("sql_dump", write_sql_dump(self._engine, target_dir / f"{backup_id}{SQL_SUFFIX}", date_range=date_range, batch_size=self._settings.dump_batch_size, backup_id=backup_id))
      sheet_counts = await self._run_step("spreadsheet", render_backup_workbook(self._session_factory, target_dir / f"{backup_id}{EXPORT_SUFFIX}", date_range))

      if spec.kind in {"semester", "scheduled"}:
        await self._archive_step(target_dir, backup_id, moment.date())

      statistics = await self._run_step("statistics", self._collect_statistics(dump, date_range))
      statistics["sheet_row_counts"] = sheet_counts
      manifest = await asyncio.to_thread(build_manifest, backup_dir=target_dir, backup_id=backup_id, backup_type=spec.kind, scope=scope, timestamp=moment.isoformat(), statistics=statistics)
      await asyncio.to_thread(write_manifest, manifest, target_dir)
    except BackupStepError:
      await asyncio.to_thread(shutil.rmtree, target_dir, ignore_errors=True)
      raise
    except OSError as exc:
      await asyncio.to_thread(shutil.rmtree, target_dir, ignore_errors=True)
      raise BackupStepError("manifest", str(exc)) from exc

    if self._settings.backup_compression_enabled:
      await self._compress(target_dir, backup_id)
    logger.info("Backup %s completed (%d files)", backup_id, len(manifest.files))
    return manifest

  async def _run_step(self, step: str, awaitable: Any) -> Any:
    try:
      return await awaitable
    except BackupStepError:
      raise
    except Exception as exc:
      logger.error("Backup step %s failed", step, exc_info=True)
      raise BackupStepError(step, str(exc) or type(exc).__name__) from exc

  async def _archive_step(self, target_dir: Path, backup_id: str, today: datetime.date) -> None:
    months = self._settings.archive_age_months
    try:
      report = await archive_old_data(self._engine, months, today=today)
    except Exception as exc:
      logger.error("Archive step of backup %s failed; continuing", backup_id, exc_info=True)
      report = ArchiveReport(cutoff=archive_cutoff(months, today=today), months=months, error=str(exc) or type(exc).__name__)
    payload = {"backupId": backup_id, **report.to_dict()}
    report_path = target_dir / f"{backup_id}{ARCHIVE_REPORT_SUFFIX}"
    await asyncio.to_thread(report_path.write_text, json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

  async def _compress(self, target_dir: Path, backup_id: str) -> None:
    try:
      await asyncio.to_thread(zip_directory, source_dir=target_dir, output_path=self.backup_dir / f"{backup_id}{ZIP_SUFFIX}", password=self._settings.backup_zip_password)
    except Exception:
      logger.error("Compression of backup %s failed; directory kept uncompressed", backup_id, exc_info=True)

  async def _collect_statistics(self, dump: DumpResult, date_range: DateRange | None) -> dict[str, Any]:
    async with self._session_factory() as session:

      async def _count(stmt: sa.Select[Any]) -> int:
        return int((await session.execute(stmt)).scalar_one() or 0)

      student_records = sa.select(sa.func.count()).select_from(AbsensiSiswa)
      teacher_records = sa.select(sa.func.count()).select_from(AbsensiGuru)
      if date_range is not None:
        student_records = student_records.where(AbsensiSiswa.tanggal.between(date_range.start, date_range.end))
        teacher_records = teacher_records.where(AbsensiGuru.tanggal.between(date_range.start, date_range.end))
      permission_requests = sa.select(sa.func.count()).select_from(queries.permission_request_query(date_range).subquery())
      statistics: dict[str, Any] = {
        "row_counts": dict(dump.row_counts),
        "total_rows": dump.total_rows,
        "student_attendance_records": await _count(student_records),
        "teacher_attendance_records": await _count(teacher_records),
        "permission_requests": await _count(permission_requests),
        "total_users": await _count(sa.select(sa.func.count()).select_from(User)),
        "total_classes": await _count(sa.select(sa.func.count()).select_from(Kelas)),
        "sql_size_bytes": dump.size_bytes,
      }
    statistics["database_size_mb"] = await self._database_size_mb()
    if date_range is not None:
      statistics["days"] = date_range.days
    return statistics

  async def _database_size_mb(self) -> float | None:
    dialect = self._engine.dialect.name
    if dialect == "sqlite":
      query = "SELECT page_count * page_size FROM pragma_page_count(), pragma_page_size()"
    elif dialect == "postgresql":
      query = "SELECT pg_database_size(current_database())"
    elif dialect in {"mysql", "mariadb"}:
      query = "SELECT SUM(data_length + index_length) FROM information_schema.tables WHERE table_schema = DATABASE()"
    else:
      return None
    try:
      async with self._engine.connect() as connection:
        size = (await connection.execute(sa.text(query))).scalar()
    except SQLAlchemyError:
      logger.warning("Could not determine database size for dialect %s", dialect, exc_info=True)
      return None
    return round(float(size or 0) / (1024 * 1024), 2)

  def _summary(self, backup_id: str) -> BackupSummary:
    directory = self.backup_dir / backup_id
    archive = self.backup_dir / f"{backup_id}{ZIP_SUFFIX}"
    has_directory = directory.is_dir()
    has_archive = archive.is_file()
    manifest: BackupManifest | None = None
    manifest_path = directory / manifest_filename(backup_id)
    if has_directory and manifest_path.is_file():
      try:
        manifest = read_manifest(manifest_path)
      except (OSError, ValueError, KeyError):
        logger.warning("Unreadable manifest for backup %s", backup_id, exc_info=True)

    created_at = _parse_timestamp(manifest.timestamp) if manifest is not None else None
    if created_at is None:
      mtime = (directory if has_directory else archive).stat().st_mtime
      created_at = datetime.datetime.fromtimestamp(mtime, datetime.UTC)
    size_bytes = (_directory_size(directory) if has_directory else 0) + (archive.stat().st_size if has_archive else 0)
    return BackupSummary(
      backup_id=backup_id,
      backup_type=manifest.backup_type if manifest is not None else _infer_backup_type(backup_id),
      created_at=created_at,
      size_bytes=size_bytes,
      has_directory=has_directory,
      has_archive=has_archive,
      scope=dict(manifest.scope) if manifest is not None else {},
      statistics=dict(manifest.statistics) if manifest is not None else {},
    )

  def list_backups(self) -> list[BackupSummary]:
    """All backups, newest first; a directory and its zip count as one entry."""
    if not self.backup_dir.is_dir():
      return []
    backup_ids: set[str] = set()
    for entry in self.backup_dir.iterdir():
      if entry.is_dir():
        backup_ids.add(entry.name)
      elif entry.is_file() and entry.suffix == ZIP_SUFFIX:
        backup_ids.add(entry.stem)
    summaries = [self._summary(backup_id) for backup_id in backup_ids if is_safe_identifier(backup_id)]
    return sorted(summaries, key=lambda summary: (summary.created_at, summary.backup_id), reverse=True)

  def _require_safe_id(self, backup_id: str) -> None:
    if not is_safe_identifier(backup_id):
      raise NotFoundError(f"Backup not found: {backup_id}")

  def delete_backup(self, backup_id: str) -> None:
    self._require_safe_id(backup_id)
    directory = self.backup_dir / backup_id
    archive = self.backup_dir / f"{backup_id}{ZIP_SUFFIX}"
    if not directory.is_dir() and not archive.is_file():
      raise NotFoundError(f"Backup not found: {backup_id}")
    if directory.is_dir():
      shutil.rmtree(directory)
    archive.unlink(missing_ok=True)
    logger.info("Deleted backup %s", backup_id)

  def prune_old_backups(self, max_backups: int | None = None) -> list[str]:
    """Delete everything beyond the newest `max_backups`; return the removed ids."""
    keep = self._settings.max_backups if max_backups is None else max_backups
    if keep < 0:
      raise ValueError("max_backups must not be negative.")
    removed = [summary.backup_id for summary in self.list_backups()[keep:]]
    for backup_id in removed:
      self.delete_backup(backup_id)
    if removed:
      logger.info("Pruned %d old backups (keeping %d)", len(removed), keep)
    return removed

  def get_backup_archive_path(self, backup_id: str) -> Path:
    self._require_safe_id(backup_id)
    archive = self.backup_dir / f"{backup_id}{ZIP_SUFFIX}"
    if not archive.is_file():
      raise NotFoundError(f"No archive for backup: {backup_id}")
    return archive
