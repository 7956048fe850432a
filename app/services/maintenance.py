"""Maintenance services: attendance archiving and download cleanup."""

from __future__ import annotations

import datetime
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine

from app.core.database import Base
from app.schema.sql import ATTENDANCE_ARCHIVE_PAIRS
from app.utils.dates import subtract_months
from app.utils.db_retry import execute_with_retry

logger = logging.getLogger(__name__)

DEFAULT_ARCHIVE_AGE_MONTHS = 24
ARCHIVE_DATE_COLUMN = "tanggal"
ARCHIVED_AT_COLUMN = "archived_at"


@dataclass
class ArchiveReport:
  """Summary of one archive run, persisted next to backups as JSON."""

  cutoff: datetime.date
  months: int
  moved: dict[str, int] = field(default_factory=dict)
  pruned: dict[str, int] | None = None
  archive_totals: dict[str, int] = field(default_factory=dict)
  error: str | None = None

  @property
  def total_moved(self) -> int:
    return sum(self.moved.values())

  def to_dict(self) -> dict[str, Any]:
    return {
      "cutoffDate": self.cutoff.isoformat(),
      "months": self.months,
      "moved": dict(self.moved),
      "totalMoved": self.total_moved,
      "pruned": dict(self.pruned) if self.pruned is not None else None,
      "archiveTotals": dict(self.archive_totals),
      "error": self.error,
    }


def archive_cutoff(months: int, *, today: datetime.date | None = None) -> datetime.date:
  """Rows dated strictly before this day are archive candidates."""
  if months < 1:
    raise ValueError("Archive age must be at least one month.")
  return subtract_months(today or datetime.date.today(), months)


def _archive_insert(dialect_name: str, archive_table: sa.Table, columns: list[str], source: sa.Select[Any]) -> sa.Executable:
  """Insert-from-select that leaves already archived primary keys untouched."""
  if dialect_name == "sqlite":
    return sqlite.insert(archive_table).from_select(columns, source).on_conflict_do_nothing()
  if dialect_name == "postgresql":
    return postgresql.insert(archive_table).from_select(columns, source).on_conflict_do_nothing()
  if dialect_name in {"mysql", "mariadb"}:
    return mysql.insert(archive_table).from_select(columns, source).prefix_with("IGNORE")
  # Other dialects: skip rows whose key is already archived.
  key_columns = list(archive_table.primary_key.columns)
  already = sa.select(sa.literal(1)).select_from(archive_table).where(*[archive_column == source.selected_columns[archive_column.name] for archive_column in key_columns])
  return sa.insert(archive_table).from_select(columns, source.where(~sa.exists(already)))


def _archive_source(live_table: sa.Table, archive_table: sa.Table, cutoff: datetime.date, archived_at: datetime.datetime) -> tuple[list[str], sa.Select[Any]]:
  columns = [column.name for column in archive_table.columns if column.name != ARCHIVED_AT_COLUMN]
  selected = [live_table.c[name] for name in columns]
  selected.append(sa.literal(archived_at, sa.DateTime()).label(ARCHIVED_AT_COLUMN))
  source = sa.select(*selected).where(live_table.c[ARCHIVE_DATE_COLUMN] < cutoff)
  return [*columns, ARCHIVED_AT_COLUMN], source


async def ensure_archive_tables(engine: AsyncEngine) -> None:
  """Create the archive tables when they do not exist yet."""
  tables = [archive.__table__ for _, archive in ATTENDANCE_ARCHIVE_PAIRS]
  async with engine.begin() as connection:
    await connection.run_sync(lambda sync_connection: Base.metadata.create_all(sync_connection, tables=tables, checkfirst=True))


async def archive_attendance(engine: AsyncEngine, cutoff: datetime.date, *, archived_at: datetime.datetime | None = None) -> dict[str, int]:
  """Copy attendance rows older than `cutoff` into the archive tables.

  Each table is copied in its own transaction; rerunning with the same cutoff
  moves nothing new because conflicting keys are ignored.
  """
  stamp = archived_at or datetime.datetime.now(datetime.UTC).replace(tzinfo=None)
  moved: dict[str, int] = {}
  for live, archive in ATTENDANCE_ARCHIVE_PAIRS:
    live_table: sa.Table = live.__table__  # type: ignore[assignment]
    archive_table: sa.Table = archive.__table__  # type: ignore[assignment]
    columns, source = _archive_source(live_table, archive_table, cutoff, stamp)
    stmt = _archive_insert(engine.dialect.name, archive_table, columns, source)

    async def _copy(stmt: sa.Executable = stmt) -> int:
      async with engine.begin() as connection:
        result = await connection.execute(stmt)
        return max(result.rowcount or 0, 0)

    moved[live_table.name] = await execute_with_retry(operation_name=f"archive:{live_table.name}", func=_copy)
    logger.info("Archived %d rows from %s older than %s", moved[live_table.name], live_table.name, cutoff.isoformat())
  return moved


async def prune_archived_attendance(engine: AsyncEngine, cutoff: datetime.date) -> dict[str, int]:
  """Delete live rows older than `cutoff` that already have an archive copy.

  Tables are pruned one transaction at a time; a failure leaves earlier tables
  pruned and later ones untouched, which is safe because every deleted row
  exists in the archive.
  """
  deleted: dict[str, int] = {}
  for live, archive in ATTENDANCE_ARCHIVE_PAIRS:
    live_table: sa.Table = live.__table__  # type: ignore[assignment]
    archive_table: sa.Table = archive.__table__  # type: ignore[assignment]
    key = next(iter(live_table.primary_key.columns))
    stmt = sa.delete(live_table).where(live_table.c[ARCHIVE_DATE_COLUMN] < cutoff, key.in_(sa.select(archive_table.c[key.name])))

    async def _delete(stmt: sa.Executable = stmt) -> int:
      async with engine.begin() as connection:
        result = await connection.execute(stmt)
        return max(result.rowcount or 0, 0)

    deleted[live_table.name] = await execute_with_retry(operation_name=f"prune:{live_table.name}", func=_delete)
    logger.info("Pruned %d archived rows from %s", deleted[live_table.name], live_table.name)
  return deleted


async def archive_table_totals(engine: AsyncEngine) -> dict[str, int]:
  totals: dict[str, int] = {}
  async with engine.connect() as connection:
    for _, archive in ATTENDANCE_ARCHIVE_PAIRS:
      archive_table: sa.Table = archive.__table__  # type: ignore[assignment]
      totals[archive_table.name] = int((await connection.execute(sa.select(sa.func.count()).select_from(archive_table))).scalar_one())
  return totals


async def archive_old_data(engine: AsyncEngine, months: int = DEFAULT_ARCHIVE_AGE_MONTHS, *, prune_live: bool = False, today: datetime.date | None = None) -> ArchiveReport:
  """Archive attendance older than `months` months, optionally pruning live rows afterwards."""
  cutoff = archive_cutoff(months, today=today)
  await ensure_archive_tables(engine)
  report = ArchiveReport(cutoff=cutoff, months=months)
  report.moved = await archive_attendance(engine, cutoff)
  if prune_live:
    report.pruned = await prune_archived_attendance(engine, cutoff)
  report.archive_totals = await archive_table_totals(engine)
  logger.info("Archive run finished: cutoff=%s moved=%d pruned=%s", cutoff.isoformat(), report.total_moved, report.pruned)
  return report


def cleanup_old_downloads(download_dir: Path, max_age_hours: int = 24, *, now: float | None = None) -> int:
  """Delete generated download files older than `max_age_hours`; return how many were removed."""
  if not download_dir.is_dir():
    return 0
  threshold = (now if now is not None else time.time()) - max_age_hours * 3600
  removed = 0
  for path in download_dir.iterdir():
    if not path.is_file():
      continue
    if path.stat().st_mtime < threshold:
      path.unlink(missing_ok=True)
      removed += 1
  if removed:
    logger.info("Removed %d expired download files from %s", removed, download_dir)
  return removed
