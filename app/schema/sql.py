from __future__ import annotations

import datetime
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class UserRole(str, Enum):
  ADMIN = "admin"
  GURU = "guru"
  SISWA = "siswa"


class AttendanceStatus(str, Enum):
  HADIR = "Hadir"
  IZIN = "Izin"
  SAKIT = "Sakit"
  ALPA = "Alpa"
  DISPEN = "Dispen"


class User(Base):
  __tablename__ = "users"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
  role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.SISWA.value)
  status: Mapped[str] = mapped_column(String(20), nullable=False, default="aktif")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime, server_default=func.now())


class Kelas(Base):
  __tablename__ = "kelas"

  id_kelas: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  nama_kelas: Mapped[str] = mapped_column(String(50), nullable=False)
  status: Mapped[str] = mapped_column(String(20), nullable=False, default="aktif")


class Guru(Base):
  __tablename__ = "guru"

  id_guru: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
  nip: Mapped[str | None] = mapped_column(String(30), nullable=True)
  nama: Mapped[str] = mapped_column(String(100), nullable=False)
  status: Mapped[str] = mapped_column(String(20), nullable=False, default="aktif")


class Siswa(Base):
  __tablename__ = "siswa"

  id_siswa: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
  nis: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
  nama: Mapped[str] = mapped_column(String(100), nullable=False)
  kelas_id: Mapped[int | None] = mapped_column(ForeignKey("kelas.id_kelas"), nullable=True, index=True)
  status: Mapped[str] = mapped_column(String(20), nullable=False, default="aktif")


class MataPelajaran(Base):
  __tablename__ = "mata_pelajaran"

  id_mapel: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  kode_mapel: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
  nama_mapel: Mapped[str] = mapped_column(String(100), nullable=False)
  status: Mapped[str] = mapped_column(String(20), nullable=False, default="aktif")


class Jadwal(Base):
  __tablename__ = "jadwal"

  id_jadwal: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  kelas_id: Mapped[int] = mapped_column(ForeignKey("kelas.id_kelas"), nullable=False, index=True)
  mapel_id: Mapped[int] = mapped_column(ForeignKey("mata_pelajaran.id_mapel"), nullable=False)
  guru_id: Mapped[int] = mapped_column(ForeignKey("guru.id_guru"), nullable=False, index=True)
  hari: Mapped[str] = mapped_column(String(10), nullable=False)
  jam_ke: Mapped[int] = mapped_column(Integer, nullable=False)


class AbsensiSiswa(Base):
  __tablename__ = "absensi_siswa"

  id_absensi: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  siswa_id: Mapped[int] = mapped_column(ForeignKey("siswa.id_siswa"), nullable=False, index=True)
  jadwal_id: Mapped[int | None] = mapped_column(ForeignKey("jadwal.id_jadwal"), nullable=True)
  guru_id: Mapped[int | None] = mapped_column(ForeignKey("guru.id_guru"), nullable=True)
  tanggal: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
  status: Mapped[str] = mapped_column(String(20), nullable=False)
  keterangan: Mapped[str | None] = mapped_column(Text, nullable=True)
  waktu_absen: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)


class AbsensiGuru(Base):
  __tablename__ = "absensi_guru"

  id_absensi: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  guru_id: Mapped[int] = mapped_column(ForeignKey("guru.id_guru"), nullable=False, index=True)
  jadwal_id: Mapped[int | None] = mapped_column(ForeignKey("jadwal.id_jadwal"), nullable=True)
  kelas_id: Mapped[int | None] = mapped_column(ForeignKey("kelas.id_kelas"), nullable=True)
  tanggal: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
  jam_ke: Mapped[int | None] = mapped_column(Integer, nullable=True)
  status: Mapped[str] = mapped_column(String(20), nullable=False)
  keterangan: Mapped[str | None] = mapped_column(Text, nullable=True)
  waktu_catat: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)


class PengajuanIzinSiswa(Base):
  __tablename__ = "pengajuan_izin_siswa"

  id_pengajuan: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  siswa_id: Mapped[int] = mapped_column(ForeignKey("siswa.id_siswa"), nullable=False, index=True)
  guru_id: Mapped[int | None] = mapped_column(ForeignKey("guru.id_guru"), nullable=True)
  tanggal_pengajuan: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False, index=True)
  tanggal_izin: Mapped[datetime.date] = mapped_column(Date, nullable=False)
  alasan: Mapped[str] = mapped_column(Text, nullable=False)
  status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
  keterangan_guru: Mapped[str | None] = mapped_column(Text, nullable=True)
  tanggal_respon: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)


# Archive tables reuse the live primary key so conflict-ignore inserts stay duplicate-free.
class AbsensiSiswaArchive(Base):
  __tablename__ = "absensi_siswa_archive"

  id_absensi: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
  siswa_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
  jadwal_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
  guru_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
  tanggal: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
  status: Mapped[str] = mapped_column(String(20), nullable=False)
  keterangan: Mapped[str | None] = mapped_column(Text, nullable=True)
  waktu_absen: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)
  archived_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)


class AbsensiGuruArchive(Base):
  __tablename__ = "absensi_guru_archive"

  id_absensi: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
  guru_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
  jadwal_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
  kelas_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
  tanggal: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
  jam_ke: Mapped[int | None] = mapped_column(Integer, nullable=True)
  status: Mapped[str] = mapped_column(String(20), nullable=False)
  keterangan: Mapped[str | None] = mapped_column(Text, nullable=True)
  waktu_catat: Mapped[datetime.datetime | None] = mapped_column(DateTime, nullable=True)
  archived_at: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)


ATTENDANCE_ARCHIVE_PAIRS: tuple[tuple[type[Base], type[Base]], ...] = ((AbsensiSiswa, AbsensiSiswaArchive), (AbsensiGuru, AbsensiGuruArchive))

# Tables whose rows are scoped to the backup date range; everything else is dumped whole.
DATE_FILTERED_TABLES: dict[str, str] = {AbsensiSiswa.__tablename__: "tanggal", AbsensiGuru.__tablename__: "tanggal"}
