"""openpyxl helpers implementing the shared sheet header/style contract."""

from __future__ import annotations

import datetime
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

ColumnFormat = Literal["text", "number", "date"]
SheetStyle = Literal["download", "backup"]

MIN_COLUMN_WIDTH = 15
MAX_COLUMN_WIDTH = 60
DATE_FORMAT = "yyyy-mm-dd"
DATETIME_FORMAT = "yyyy-mm-dd hh:mm:ss"

_DOWNLOAD_HEADER_FONT = Font(bold=True)
_DOWNLOAD_HEADER_FILL = PatternFill(start_color="E0E0E0", end_color="E0E0E0", fill_type="solid")
_BACKUP_HEADER_FONT = Font(bold=True, color="FFFFFF")
_BACKUP_HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
_TITLE_FONT = Font(bold=True, size=14)


@dataclass(frozen=True)
class ColumnSpec:
  """One output column: visible header, row key and semantic format."""

  header: str
  key: str
  fmt: ColumnFormat = "text"
  width: int = MIN_COLUMN_WIDTH


def _cell_value(value: Any, fmt: ColumnFormat) -> Any:
  if value is None:
    return None
  if fmt == "number":
    return value if isinstance(value, int | float) else _as_number(value)
  if fmt == "date" and isinstance(value, str):
    try:
      return datetime.datetime.fromisoformat(value)
    except ValueError:
      return value
  if isinstance(value, datetime.datetime) and value.tzinfo is not None:
    # Excel has no timezone support.
    return value.replace(tzinfo=None)
  return value


def _as_number(value: Any) -> Any:
  try:
    number = float(value)
  except (TypeError, ValueError):
    return value
  return int(number) if number.is_integer() else number


def _number_format(value: Any, fmt: ColumnFormat) -> str | None:
  if fmt != "date":
    return None
  if isinstance(value, datetime.datetime):
    return DATETIME_FORMAT if (value.hour, value.minute, value.second) != (0, 0, 0) else DATE_FORMAT
  if isinstance(value, datetime.date):
    return DATE_FORMAT
  return None


def write_table_sheet(ws: Worksheet, columns: Sequence[ColumnSpec], rows: Iterable[Mapping[str, Any]], *, style: SheetStyle = "download", title: str | None = None, freeze: bool = True) -> int:
  """Append an optional title, a styled header and the data rows; return the data row count.

  Several tables can share one sheet by calling this repeatedly with `freeze=False`.
  """
  if title:
    ws.append([title])
    title_row = ws.max_row
    ws.cell(row=title_row, column=1).font = _TITLE_FONT
    if len(columns) > 1:
      ws.merge_cells(start_row=title_row, start_column=1, end_row=title_row, end_column=len(columns))

  ws.append([column.header for column in columns])
  header_row = ws.max_row
  font, fill = (_BACKUP_HEADER_FONT, _BACKUP_HEADER_FILL) if style == "backup" else (_DOWNLOAD_HEADER_FONT, _DOWNLOAD_HEADER_FILL)
  for index in range(1, len(columns) + 1):
    cell = ws.cell(row=header_row, column=index)
    cell.font = font
    cell.fill = fill
    cell.alignment = Alignment(horizontal="center", vertical="center")

  widths = [max(column.width, MIN_COLUMN_WIDTH, len(column.header) + 2) for column in columns]
  count = 0
  for row in rows:
    values = [_cell_value(row.get(column.key), column.fmt) for column in columns]
    ws.append(values)
    count += 1
    for index, (column, value) in enumerate(zip(columns, values, strict=True), start=1):
      number_format = _number_format(value, column.fmt)
      if number_format:
        ws.cell(row=ws.max_row, column=index).number_format = number_format
      if value is not None:
        widths[index - 1] = min(max(widths[index - 1], len(str(value)) + 2), MAX_COLUMN_WIDTH)

  for index, width in enumerate(widths, start=1):
    dimension = ws.column_dimensions[get_column_letter(index)]
    dimension.width = max(dimension.width or 0, width)
  if freeze:
    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
  return count


def new_workbook() -> Workbook:
  """Workbook without the default empty sheet."""
  workbook = Workbook()
  workbook.remove(workbook.active)
  return workbook
