"""Queries and column schemas behind the attendance spreadsheets."""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import Select, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.schema.sql import AbsensiGuru, AbsensiSiswa, Guru, Jadwal, Kelas, MataPelajaran, PengajuanIzinSiswa, Siswa, User
from app.utils.dates import DateRange
from app.utils.workbook import ColumnSpec

ACTIVE_STATUS = "aktif"

STUDENT_ATTENDANCE_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Tanggal", "tanggal", "date", 12),
  ColumnSpec("NIS", "nis", "text", 15),
  ColumnSpec("Nama Siswa", "nama_siswa", "text", 25),
  ColumnSpec("Kelas", "nama_kelas", "text", 15),
  ColumnSpec("Status", "status", "text", 12),
  ColumnSpec("Keterangan", "keterangan", "text", 20),
  ColumnSpec("Waktu Absen", "waktu_absen", "date", 20),
  ColumnSpec("Guru", "nama_guru", "text", 25),
  ColumnSpec("Mata Pelajaran", "nama_mapel", "text", 20),
)

TEACHER_ATTENDANCE_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Tanggal", "tanggal", "date", 12),
  ColumnSpec("Jam Ke", "jam_ke", "number", 8),
  ColumnSpec("Nama Guru", "nama_guru", "text", 25),
  ColumnSpec("Kelas", "nama_kelas", "text", 15),
  ColumnSpec("Status", "status", "text", 12),
  ColumnSpec("Keterangan", "keterangan", "text", 20),
  ColumnSpec("Waktu Catat", "waktu_catat", "date", 20),
  ColumnSpec("Mata Pelajaran", "nama_mapel", "text", 20),
)

PERMISSION_REQUEST_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Tanggal Pengajuan", "tanggal_pengajuan", "date", 20),
  ColumnSpec("NIS", "nis", "text", 15),
  ColumnSpec("Nama Siswa", "nama_siswa", "text", 25),
  ColumnSpec("Kelas", "nama_kelas", "text", 15),
  ColumnSpec("Tanggal Izin", "tanggal_izin", "date", 12),
  ColumnSpec("Alasan", "alasan", "text", 30),
  ColumnSpec("Status", "status", "text", 12),
  ColumnSpec("Keterangan Guru", "keterangan_guru", "text", 25),
  ColumnSpec("Tanggal Respon", "tanggal_respon", "date", 20),
  ColumnSpec("Guru Approve", "nama_guru", "text", 25),
)

STATUS_SUMMARY_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Kategori", "kategori", "text", 15),
  ColumnSpec("Status", "status", "text", 15),
  ColumnSpec("Jumlah", "jumlah", "number", 10),
)

METRIC_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Metrik", "metrik", "text", 30),
  ColumnSpec("Nilai", "nilai", "text", 20),
)

USER_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Username", "username", "text", 20),
  ColumnSpec("Role", "role", "text", 12),
  ColumnSpec("Status", "status", "text", 12),
  ColumnSpec("Dibuat", "created_at", "date", 20),
)

CLASS_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Nama Kelas", "nama_kelas", "text", 20),
  ColumnSpec("Status", "status", "text", 12),
)

SUBJECT_COLUMNS: tuple[ColumnSpec, ...] = (
  ColumnSpec("Kode Mapel", "kode_mapel", "text", 15),
  ColumnSpec("Nama Mapel", "nama_mapel", "text", 25),
  ColumnSpec("Status", "status", "text", 12),
)


def student_attendance_query(date_range: DateRange | None, *, class_id: int | None = None) -> Select[Any]:
  # The recording teacher falls back to the scheduled teacher when absent.
  teacher_id = func.coalesce(AbsensiSiswa.guru_id, Jadwal.guru_id)
  stmt = (
    select(
      AbsensiSiswa.tanggal.label("tanggal"),
      Siswa.nis.label("nis"),
      Siswa.nama.label("nama_siswa"),
      Kelas.nama_kelas.label("nama_kelas"),
      AbsensiSiswa.status.label("status"),
      AbsensiSiswa.keterangan.label("keterangan"),
      AbsensiSiswa.waktu_absen.label("waktu_absen"),
      Guru.nama.label("nama_guru"),
      MataPelajaran.nama_mapel.label("nama_mapel"),
    )
    .select_from(AbsensiSiswa)
    .join(Siswa, Siswa.id_siswa == AbsensiSiswa.siswa_id)
    .outerjoin(Kelas, Kelas.id_kelas == Siswa.kelas_id)
    .outerjoin(Jadwal, Jadwal.id_jadwal == AbsensiSiswa.jadwal_id)
    .outerjoin(Guru, Guru.id_guru == teacher_id)
    .outerjoin(MataPelajaran, MataPelajaran.id_mapel == Jadwal.mapel_id)
  )
  if date_range is not None:
    stmt = stmt.where(AbsensiSiswa.tanggal.between(date_range.start, date_range.end))
  if class_id is not None:
    stmt = stmt.where(Siswa.kelas_id == class_id)
  return stmt.order_by(AbsensiSiswa.tanggal.desc(), Kelas.nama_kelas, Siswa.nama, AbsensiSiswa.id_absensi)


def teacher_attendance_query(date_range: DateRange | None, *, teacher_id: int | None = None) -> Select[Any]:
  stmt = (
    select(
      AbsensiGuru.tanggal.label("tanggal"),
      AbsensiGuru.jam_ke.label("jam_ke"),
      Guru.nama.label("nama_guru"),
      Kelas.nama_kelas.label("nama_kelas"),
      AbsensiGuru.status.label("status"),
      AbsensiGuru.keterangan.label("keterangan"),
      AbsensiGuru.waktu_catat.label("waktu_catat"),
      MataPelajaran.nama_mapel.label("nama_mapel"),
    )
    .select_from(AbsensiGuru)
    .join(Guru, Guru.id_guru == AbsensiGuru.guru_id)
    .outerjoin(Jadwal, Jadwal.id_jadwal == AbsensiGuru.jadwal_id)
    .outerjoin(Kelas, Kelas.id_kelas == func.coalesce(AbsensiGuru.kelas_id, Jadwal.kelas_id))
    .outerjoin(MataPelajaran, MataPelajaran.id_mapel == Jadwal.mapel_id)
  )
  if date_range is not None:
    stmt = stmt.where(AbsensiGuru.tanggal.between(date_range.start, date_range.end))
  if teacher_id is not None:
    stmt = stmt.where(AbsensiGuru.guru_id == teacher_id)
  return stmt.order_by(AbsensiGuru.tanggal.desc(), AbsensiGuru.jam_ke, Guru.nama, AbsensiGuru.id_absensi)


def _day_bounds(date_range: DateRange) -> tuple[datetime.datetime, datetime.datetime]:
  start = datetime.datetime.combine(date_range.start, datetime.time.min)
  end = datetime.datetime.combine(date_range.end + datetime.timedelta(days=1), datetime.time.min)
  return start, end


def permission_request_query(date_range: DateRange | None) -> Select[Any]:
  stmt = (
    select(
      PengajuanIzinSiswa.tanggal_pengajuan.label("tanggal_pengajuan"),
      Siswa.nis.label("nis"),
      Siswa.nama.label("nama_siswa"),
      Kelas.nama_kelas.label("nama_kelas"),
      PengajuanIzinSiswa.tanggal_izin.label("tanggal_izin"),
      PengajuanIzinSiswa.alasan.label("alasan"),
      PengajuanIzinSiswa.status.label("status"),
      PengajuanIzinSiswa.keterangan_guru.label("keterangan_guru"),
      PengajuanIzinSiswa.tanggal_respon.label("tanggal_respon"),
      Guru.nama.label("nama_guru"),
    )
    .select_from(PengajuanIzinSiswa)
    .join(Siswa, Siswa.id_siswa == PengajuanIzinSiswa.siswa_id)
    .outerjoin(Kelas, Kelas.id_kelas == Siswa.kelas_id)
    .outerjoin(Guru, Guru.id_guru == PengajuanIzinSiswa.guru_id)
  )
  if date_range is not None:
    start, end = _day_bounds(date_range)
    stmt = stmt.where(PengajuanIzinSiswa.tanggal_pengajuan >= start, PengajuanIzinSiswa.tanggal_pengajuan < end)
  return stmt.order_by(PengajuanIzinSiswa.tanggal_pengajuan.desc(), PengajuanIzinSiswa.id_pengajuan)


async def fetch_rows(session: AsyncSession, stmt: Select[Any]) -> list[dict[str, Any]]:
  """Execute a select and return mapping rows."""
  result = await session.execute(stmt)
  return [dict(row) for row in result.mappings().all()]


async def fetch_status_counts(session: AsyncSession, date_range: DateRange | None) -> list[dict[str, Any]]:
  """Attendance counts grouped by status for students and teachers."""
  rows: list[dict[str, Any]] = []
  for label, model in (("Siswa", AbsensiSiswa), ("Guru", AbsensiGuru)):
    stmt = select(literal(label).label("kategori"), model.status.label("status"), func.count().label("jumlah")).group_by(model.status).order_by(model.status)
    if date_range is not None:
      stmt = stmt.where(model.tanggal.between(date_range.start, date_range.end))
    rows.extend(await fetch_rows(session, stmt))
  return rows


async def fetch_overview_metrics(session: AsyncSession, date_range: DateRange | None) -> list[dict[str, Any]]:
  """Headline counts shown on the analytics summary sheet."""

  async def _count(stmt: Select[Any]) -> int:
    return int((await session.execute(stmt)).scalar_one() or 0)

  metrics = [
    {"metrik": "Total Siswa Aktif", "nilai": await _count(select(func.count()).select_from(Siswa).where(Siswa.status == ACTIVE_STATUS))},
    {"metrik": "Total Guru Aktif", "nilai": await _count(select(func.count()).select_from(Guru).where(Guru.status == ACTIVE_STATUS))},
    {"metrik": "Total Kelas Aktif", "nilai": await _count(select(func.count()).select_from(Kelas).where(Kelas.status == ACTIVE_STATUS))},
  ]
  student_records = select(func.count()).select_from(AbsensiSiswa)
  teacher_records = select(func.count()).select_from(AbsensiGuru)
  if date_range is not None:
    student_records = student_records.where(AbsensiSiswa.tanggal.between(date_range.start, date_range.end))
    teacher_records = teacher_records.where(AbsensiGuru.tanggal.between(date_range.start, date_range.end))
    metrics.append({"metrik": "Periode", "nilai": f"{date_range.start.isoformat()} s/d {date_range.end.isoformat()}"})
    metrics.append({"metrik": "Total Hari", "nilai": date_range.days})
  metrics.append({"metrik": "Total Absensi Siswa", "nilai": await _count(student_records)})
  metrics.append({"metrik": "Total Absensi Guru", "nilai": await _count(teacher_records)})
  return metrics


async def fetch_system_configuration(session: AsyncSession) -> dict[str, list[dict[str, Any]]]:
  """Users, classes and subjects; never filtered by date."""
  users = await fetch_rows(session, select(User.username, User.role, User.status, User.created_at).order_by(User.role, User.username))
  classes = await fetch_rows(session, select(Kelas.nama_kelas, Kelas.status).order_by(Kelas.nama_kelas))
  subjects = await fetch_rows(session, select(MataPelajaran.kode_mapel, MataPelajaran.nama_mapel, MataPelajaran.status).order_by(MataPelajaran.kode_mapel))
  return {"users": users, "classes": classes, "subjects": subjects}
