"""Portable SQL dump writer used by the backup pipeline.

How/Why:
- The dump is code-driven rather than shelling out to mysqldump/pg_dump so the
  attendance tables can be scoped to a date window while every other table is
  copied whole.
- Rows are read through untyped columns so values reach the encoder exactly as
  the driver returned them; malformed temporal values become NULL instead of
  aborting the dump.
"""

from __future__ import annotations

import datetime
import json
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Literal, TextIO

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine
from sqlalchemy.schema import CreateIndex, CreateTable

from app.schema.sql import DATE_FILTERED_TABLES
from app.utils.dates import DateRange

logger = logging.getLogger(__name__)

TemporalKind = Literal["date", "datetime", "time"]

DEFAULT_BATCH_SIZE = 1000
_ZERO_DATE_PREFIX = "0000-00-00"


@dataclass(frozen=True)
class DumpResult:
  """Outcome of one dump: where it went and how many rows each table contributed."""

  path: Path
  tables: list[str]
  row_counts: dict[str, int]
  size_bytes: int

  @property
  def total_rows(self) -> int:
    return sum(self.row_counts.values())


def temporal_kind(column_type: sa.types.TypeEngine[Any]) -> TemporalKind | None:
  """Classify a reflected column type as date, datetime or time."""
  if isinstance(column_type, sa.DateTime):
    return "datetime"
  if isinstance(column_type, sa.Date):
    return "date"
  if isinstance(column_type, sa.Time):
    return "time"
  return None


def _quote_string(value: str, *, escape_backslashes: bool) -> str:
  if escape_backslashes:
    value = value.replace("\\", "\\\\")
  return "'" + value.replace("'", "''") + "'"


def _parse_temporal_text(raw: str) -> datetime.datetime | datetime.time | None:
  text = raw.strip()
  if not text or text.startswith(_ZERO_DATE_PREFIX):
    return None
  try:
    return datetime.datetime.fromisoformat(text)
  except ValueError:
    pass
  try:
    return datetime.time.fromisoformat(text)
  except ValueError:
    return None


def _encode_temporal(value: Any, kind: TemporalKind) -> str:
  """Format a temporal value, degrading anything unparseable to NULL."""
  parsed: Any = value
  if isinstance(value, str):
    parsed = _parse_temporal_text(value)
  elif isinstance(value, datetime.timedelta) and kind == "time":
    # MySQL TIME columns come back as timedelta.
    total = int(value.total_seconds())
    if total < 0:
      return "NULL"
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"'{hours:02d}:{minutes:02d}:{seconds:02d}'"

  try:
    if isinstance(parsed, datetime.datetime):
      if kind == "date":
        return f"'{parsed.strftime('%Y-%m-%d')}'"
      if kind == "time":
        return f"'{parsed.strftime('%H:%M:%S')}'"
      return f"'{parsed.strftime('%Y-%m-%d %H:%M:%S')}'"
    if isinstance(parsed, datetime.date):
      if kind == "time":
        return "NULL"
      suffix = " 00:00:00" if kind == "datetime" else ""
      return f"'{parsed.strftime('%Y-%m-%d')}{suffix}'"
    if isinstance(parsed, datetime.time) and kind == "time":
      return f"'{parsed.strftime('%H:%M:%S')}'"
  except (ValueError, OverflowError):
    return "NULL"
  return "NULL"


def encode_sql_value(value: Any, *, kind: TemporalKind | None = None, escape_backslashes: bool = False) -> str:
  """Render one Python value as a SQL literal."""
  if value is None:
    return "NULL"
  if kind is not None:
    return _encode_temporal(value, kind)
  if isinstance(value, bool):
    return "1" if value else "0"
  if isinstance(value, int):
    return str(value)
  if isinstance(value, float):
    return repr(value) if math.isfinite(value) else "NULL"
  if isinstance(value, Decimal):
    return str(value) if value.is_finite() else "NULL"
  if isinstance(value, bytes | bytearray | memoryview):
    return f"X'{bytes(value).hex()}'"
  if isinstance(value, datetime.datetime):
    return _encode_temporal(value, "datetime")
  if isinstance(value, datetime.date):
    return _encode_temporal(value, "date")
  if isinstance(value, datetime.time | datetime.timedelta):
    return _encode_temporal(value, "time")
  if isinstance(value, dict | list):
    return _quote_string(json.dumps(value, ensure_ascii=False, default=str), escape_backslashes=escape_backslashes)
  return _quote_string(str(value), escape_backslashes=escape_backslashes)


def _reflect_metadata(sync_connection: Connection) -> sa.MetaData:
  metadata = sa.MetaData()
  metadata.reflect(bind=sync_connection)
  return metadata


def _statement(clause: sa.schema.ExecutableDDLElement, dialect: Dialect) -> str:
  return str(clause.compile(dialect=dialect)).strip().rstrip(";") + ";"


def _write_header(handle: TextIO, *, dialect: Dialect, backup_id: str | None, date_range: DateRange | None, tables: list[sa.Table]) -> None:
  generated = datetime.datetime.now(datetime.UTC).strftime("%Y-%m-%d %H:%M:%S")
  handle.write("-- Absenta database backup\n")
  if backup_id:
    handle.write(f"-- Backup ID: {backup_id}\n")
  handle.write(f"-- Generated: {generated} UTC\n")
  handle.write(f"-- Dialect: {dialect.name}\n")
  if date_range is not None:
    handle.write(f"-- Date range: {date_range.start.isoformat()} to {date_range.end.isoformat()}\n")
  handle.write(f"-- Tables: {len(tables)}\n\n")
  if dialect.name == "mysql":
    handle.write("SET FOREIGN_KEY_CHECKS=0;\n\n")
  # Drop children before parents so foreign keys never block the drop.
  preparer = dialect.identifier_preparer
  for table in reversed(tables):
    handle.write(f"DROP TABLE IF EXISTS {preparer.format_table(table)};\n")
  handle.write("\n")


def _rows_query(table: sa.Table, *, date_range: DateRange | None, filter_column: str | None) -> sa.Select[Any]:
  light = sa.table(table.name, *[sa.column(column.name) for column in table.columns])
  stmt = sa.select(*light.columns).select_from(light)
  if date_range is not None and filter_column is not None and filter_column in table.columns:
    typed_filter = sa.column(filter_column, table.columns[filter_column].type)
    stmt = stmt.where(typed_filter.between(date_range.start, date_range.end))
  primary_key = [sa.column(column.name) for column in table.primary_key.columns]
  if primary_key:
    stmt = stmt.order_by(*primary_key)
  return stmt


def _format_insert(table: sa.Table, column_sql: str, rows: list[Mapping[str, Any]], *, kinds: dict[str, TemporalKind | None], dialect: Dialect) -> str:
  escape_backslashes = dialect.name == "mysql"
  rendered_rows = []
  for row in rows:
    values = ", ".join(encode_sql_value(row[name], kind=kinds[name], escape_backslashes=escape_backslashes) for name in kinds)
    rendered_rows.append(f"({values})")
  return f"INSERT INTO {dialect.identifier_preparer.format_table(table)} ({column_sql}) VALUES\n" + ",\n".join(rendered_rows) + ";\n"


async def _dump_table(connection: AsyncConnection, handle: TextIO, table: sa.Table, *, date_range: DateRange | None, filter_column: str | None, batch_size: int) -> int:
  dialect = connection.dialect
  preparer = dialect.identifier_preparer
  handle.write(f"-- Table structure for {table.name}\n")
  handle.write(_statement(CreateTable(table), dialect) + "\n")
  for index in sorted(table.indexes, key=lambda item: item.name or ""):
    handle.write(_statement(CreateIndex(index), dialect) + "\n")
  handle.write("\n")

  kinds = {column.name: temporal_kind(column.type) for column in table.columns}
  column_sql = ", ".join(preparer.quote(name) for name in kinds)
  scoped = date_range is not None and filter_column is not None
  handle.write(f"-- Data for {table.name}{' (date filtered)' if scoped else ''}\n")

  row_count = 0
  result = await connection.stream(_rows_query(table, date_range=date_range, filter_column=filter_column))
  async for partition in result.mappings().partitions(batch_size):
    handle.write(_format_insert(table, column_sql, list(partition), kinds=kinds, dialect=dialect))
    row_count += len(partition)
  handle.write(f"-- {row_count} rows dumped from {table.name}\n\n")
  return row_count


async def write_sql_dump(engine: AsyncEngine, destination: Path, *, date_range: DateRange | None = None, batch_size: int = DEFAULT_BATCH_SIZE, backup_id: str | None = None, date_filtered_tables: Mapping[str, str] = DATE_FILTERED_TABLES) -> DumpResult:
  """Dump structure and rows of every table into `destination`.

  Tables named in `date_filtered_tables` are restricted to `date_range` on the
  mapped date column; a None range dumps them whole.
  """
  if batch_size <= 0:
    raise ValueError("batch_size must be a positive integer.")
  destination.parent.mkdir(parents=True, exist_ok=True)
  row_counts: dict[str, int] = {}
  async with engine.connect() as connection:
    metadata = await connection.run_sync(_reflect_metadata)
    tables = list(metadata.sorted_tables)
    with destination.open("w", encoding="utf-8", newline="\n") as handle:
      _write_header(handle, dialect=connection.dialect, backup_id=backup_id, date_range=date_range, tables=tables)
      for table in tables:
        row_counts[table.name] = await _dump_table(connection, handle, table, date_range=date_range, filter_column=date_filtered_tables.get(table.name), batch_size=batch_size)
        logger.debug("Dumped %d rows from %s", row_counts[table.name], table.name)
      if connection.dialect.name == "mysql":
        handle.write("SET FOREIGN_KEY_CHECKS=1;\n")
      handle.write("-- Dump completed\n")

  size_bytes = destination.stat().st_size
  logger.info("SQL dump written to %s (%d tables, %d rows, %d bytes)", destination, len(tables), sum(row_counts.values()), size_bytes)
  return DumpResult(path=destination, tables=[table.name for table in tables], row_counts=row_counts, size_bytes=size_bytes)
