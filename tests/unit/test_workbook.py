from __future__ import annotations

import datetime

from app.utils.workbook import DATE_FORMAT, DATETIME_FORMAT, MAX_COLUMN_WIDTH, ColumnSpec, new_workbook, write_table_sheet

COLUMNS = (ColumnSpec("Tanggal", "tanggal", "date"), ColumnSpec("Nama", "nama"), ColumnSpec("Jumlah", "jumlah", "number"))


def test_download_sheet_has_frozen_styled_header_and_typed_cells() -> None:
  workbook = new_workbook()
  assert workbook.sheetnames == []
  ws = workbook.create_sheet("Absensi Siswa")
  rows = [
    {"tanggal": datetime.date(2025, 8, 4), "nama": "Andi", "jumlah": "3"},
    {"tanggal": "2025-08-05 07:15:00", "nama": "x" * 200, "jumlah": None},
  ]

  count = write_table_sheet(ws, COLUMNS, rows)

  assert count == 2
  assert [cell.value for cell in ws[1]] == ["Tanggal", "Nama", "Jumlah"]
  assert ws["A1"].font.bold is True
  assert ws["A1"].fill.start_color.rgb.endswith("E0E0E0")
  assert ws.freeze_panes == "A2"
  assert ws["A2"].number_format == DATE_FORMAT
  assert ws["C2"].value == 3
  assert ws["A3"].value == datetime.datetime(2025, 8, 5, 7, 15)
  assert ws["A3"].number_format == DATETIME_FORMAT
  assert ws["C3"].value is None
  assert ws.column_dimensions["B"].width == MAX_COLUMN_WIDTH


def test_empty_rows_still_write_the_header() -> None:
  ws = new_workbook().create_sheet("Kosong")
  assert write_table_sheet(ws, COLUMNS, []) == 0
  assert ws.max_row == 1
  assert ws["B1"].value == "Nama"


def test_backup_style_with_title_and_stacked_tables() -> None:
  ws = new_workbook().create_sheet("Analytics Summary")
  first = write_table_sheet(ws, COLUMNS, [{"nama": "a"}], style="backup", title="Ringkasan", freeze=False)
  ws.append([])
  second = write_table_sheet(ws, COLUMNS[:2], [{"nama": "b"}, {"nama": "c"}], style="backup", title="Rekap", freeze=False)

  assert (first, second) == (1, 2)
  assert ws["A1"].value == "Ringkasan"
  assert ws["A1"].font.bold is True
  assert "A1:C1" in {str(merged) for merged in ws.merged_cells.ranges}
  assert ws["A2"].font.color.rgb.endswith("FFFFFF")
  assert ws["A2"].fill.start_color.rgb.endswith("4472C4")
  assert ws["A5"].value == "Rekap"
  assert ws.freeze_panes is None
