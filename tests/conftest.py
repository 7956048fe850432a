"""Shared fixtures: isolated settings, an in-memory database and seed data."""

from __future__ import annotations

import datetime
import sys
from collections.abc import AsyncIterator
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.config import Settings, get_settings  # noqa: E402
from app.core.database import Base  # noqa: E402
from app.schema.sql import AbsensiGuru, AbsensiSiswa, Guru, Jadwal, Kelas, MataPelajaran, PengajuanIzinSiswa, Siswa, User  # noqa: E402

OLD_DAY = datetime.date(2020, 3, 10)
RECENT_DAY = datetime.date(2025, 8, 4)


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
  """Settings pointing every directory at tmp_path with compression off."""
  return replace(
    get_settings(),
    backup_dir=str(tmp_path / "backups"),
    download_dir=str(tmp_path / "downloads"),
    log_dir=str(tmp_path / "logs"),
    backup_compression_enabled=False,
    backup_zip_password=None,
    restore_mode="partial",
    restore_verify_checksums=True,
    archive_age_months=24,
    max_backups=10,
    download_concurrency=2,
    download_max_attempts=3,
    download_backoff_ms=0,
    download_keep_completed=10,
    download_keep_failed=5,
    report_concurrency=1,
    report_max_attempts=2,
    report_backoff_ms=0,
    report_keep_completed=5,
    report_keep_failed=3,
    job_stall_threshold_seconds=30.0,
    job_stall_check_interval_seconds=3600.0,
    job_estimate_base_seconds=30,
  )


@pytest.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
  """A single shared in-memory SQLite connection with the schema created."""
  db_engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
  async with db_engine.begin() as connection:
    await connection.run_sync(Base.metadata.create_all)
  yield db_engine
  await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
  return async_sessionmaker(engine, expire_on_commit=False)


async def seed_school(session_factory: async_sessionmaker[AsyncSession]) -> None:
  """Two classes, two teachers, three students and attendance on an old and a recent day."""
  async with session_factory() as session:
    session.add_all(
      [
        User(id=1, username="admin", role="admin"),
        User(id=2, username="bu.sari", role="guru"),
        User(id=3, username="pak.budi", role="guru"),
        User(id=4, username="andi", role="siswa"),
        User(id=5, username="citra", role="siswa"),
        User(id=6, username="dewi", role="siswa", status="nonaktif"),
      ]
    )
    session.add_all([Kelas(id_kelas=1, nama_kelas="X IPA 1"), Kelas(id_kelas=2, nama_kelas="XI IPS 2")])
    session.add_all([Guru(id_guru=1, user_id=2, nip="19800101", nama="Sari Wulandari"), Guru(id_guru=2, user_id=3, nip="19750505", nama="Budi Santoso")])
    session.add_all(
      [
        Siswa(id_siswa=1, user_id=4, nis="1001", nama="Andi Pratama", kelas_id=1),
        Siswa(id_siswa=2, user_id=5, nis="1002", nama="Citra O'Neil", kelas_id=1),
        Siswa(id_siswa=3, user_id=6, nis="2001", nama="Dewi Lestari", kelas_id=2, status="nonaktif"),
      ]
    )
    session.add_all([MataPelajaran(id_mapel=1, kode_mapel="MTK", nama_mapel="Matematika"), MataPelajaran(id_mapel=2, kode_mapel="BIN", nama_mapel="Bahasa Indonesia")])
    await session.flush()
    session.add_all([Jadwal(id_jadwal=1, kelas_id=1, mapel_id=1, guru_id=1, hari="Senin", jam_ke=1), Jadwal(id_jadwal=2, kelas_id=2, mapel_id=2, guru_id=2, hari="Senin", jam_ke=2)])
    await session.flush()
    session.add_all(
      [
        AbsensiSiswa(id_absensi=1, siswa_id=1, jadwal_id=1, guru_id=1, tanggal=OLD_DAY, status="Hadir"),
        AbsensiSiswa(id_absensi=2, siswa_id=2, jadwal_id=1, guru_id=1, tanggal=OLD_DAY, status="Sakit", keterangan="Demam; istirahat"),
        AbsensiSiswa(id_absensi=3, siswa_id=1, jadwal_id=1, guru_id=1, tanggal=RECENT_DAY, status="Hadir", waktu_absen=datetime.datetime(2025, 8, 4, 7, 5)),
        AbsensiSiswa(id_absensi=4, siswa_id=2, jadwal_id=1, guru_id=1, tanggal=RECENT_DAY, status="Izin", keterangan="Acara keluarga"),
        AbsensiSiswa(id_absensi=5, siswa_id=3, jadwal_id=2, guru_id=2, tanggal=RECENT_DAY, status="Alpa"),
      ]
    )
    session.add_all(
      [
        AbsensiGuru(id_absensi=1, guru_id=1, jadwal_id=1, kelas_id=1, tanggal=OLD_DAY, jam_ke=1, status="Hadir"),
        AbsensiGuru(id_absensi=2, guru_id=1, jadwal_id=1, kelas_id=1, tanggal=RECENT_DAY, jam_ke=1, status="Hadir", waktu_catat=datetime.datetime(2025, 8, 4, 7, 0)),
        AbsensiGuru(id_absensi=3, guru_id=2, jadwal_id=2, kelas_id=2, tanggal=RECENT_DAY, jam_ke=2, status="Sakit"),
      ]
    )
    session.add(
      PengajuanIzinSiswa(
        id_pengajuan=1,
        siswa_id=2,
        guru_id=1,
        tanggal_pengajuan=datetime.datetime(2025, 8, 3, 19, 30),
        tanggal_izin=RECENT_DAY,
        alasan="Acara keluarga di luar kota",
        status="disetujui",
      )
    )
    await session.commit()


@pytest.fixture
async def seeded_factory(session_factory: async_sessionmaker[AsyncSession]) -> async_sessionmaker[AsyncSession]:
  await seed_school(session_factory)
  return session_factory
