"""Restoring SQL dumps from backup directories and zip archives."""

from __future__ import annotations

import datetime
import shutil
import threading
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest
import sqlalchemy as sa

from app.config import Settings
from app.core.exceptions import BackupIntegrityError, NotFoundError
from app.schema.sql import AbsensiSiswa, Kelas, Siswa
from app.services.backups import BackupOrchestrator, ScheduledBackupSpec
from app.services.checksums import verify_manifest
from app.services.restore import RestoreEngine, RestoreMode

MANUAL_SCRIPT = """-- hand written backup
INSERT INTO kelas (id_kelas, nama_kelas, status) VALUES (10, 'XII IPA 1', 'aktif');
INSERT INTO tabel_hilang VALUES (1);
INSERT INTO kelas (id_kelas, nama_kelas, status) VALUES (11, 'XII IPS 1', 'aktif');
"""


async def _count(engine, table) -> int:
  async with engine.connect() as connection:
    return int((await connection.execute(sa.select(sa.func.count()).select_from(table))).scalar_one())


async def _full_backup(engine, session_factory, settings: Settings) -> str:
  clock = lambda: datetime.datetime(2026, 10, 18, 8, 0, tzinfo=datetime.UTC)  # noqa: E731
  manifest = await BackupOrchestrator(engine=engine, session_factory=session_factory, settings=settings, clock=clock).create_backup(ScheduledBackupSpec(name="nightly"))
  return manifest.backup_id


async def _damage(session_factory) -> None:
  async with session_factory() as session:
    await session.execute(sa.delete(AbsensiSiswa))
    session.add(Kelas(id_kelas=99, nama_kelas="Kelas Sementara"))
    await session.commit()


def _manual_backup(settings: Settings, backup_id: str = "manual_backup") -> str:
  directory = Path(settings.backup_dir) / backup_id
  directory.mkdir(parents=True)
  (directory / f"{backup_id}.sql").write_text(MANUAL_SCRIPT, encoding="utf-8")
  return backup_id


@pytest.mark.anyio
async def test_round_trip_restores_dumped_rows(engine, seeded_factory, settings) -> None:
  backup_id = await _full_backup(engine, seeded_factory, settings)
  await _damage(seeded_factory)
  assert await _count(engine, AbsensiSiswa) == 0

  outcome = await RestoreEngine(engine=engine, settings=settings).restore(backup_id)

  assert outcome.success is True
  assert outcome.mode is RestoreMode.PARTIAL
  assert outcome.source == "directory"
  assert outcome.statements_failed == 0
  assert outcome.statements_succeeded == outcome.statements_total
  assert await _count(engine, AbsensiSiswa) == 5
  assert await _count(engine, Kelas) == 2
  async with seeded_factory() as session:
    citra = (await session.execute(sa.select(Siswa).where(Siswa.nis == "1002"))).scalar_one()
    present = (await session.execute(sa.select(AbsensiSiswa).where(AbsensiSiswa.id_absensi == 3))).scalar_one()
  assert citra.nama == "Citra O'Neil"
  assert present.waktu_absen == datetime.datetime(2025, 8, 4, 7, 5)


@pytest.mark.anyio
async def test_restore_from_archive_when_directory_is_gone(engine, seeded_factory, settings) -> None:
  compressed = replace(settings, backup_compression_enabled=True, backup_zip_password="rahasia")
  backup_id = await _full_backup(engine, seeded_factory, compressed)
  shutil.rmtree(Path(settings.backup_dir) / backup_id)
  await _damage(seeded_factory)

  outcome = await RestoreEngine(engine=engine, settings=compressed).restore(backup_id, "atomic")

  assert outcome.success is True
  assert outcome.source == "archive"
  assert outcome.mode is RestoreMode.ATOMIC
  assert await _count(engine, AbsensiSiswa) == 5
  assert not (Path(settings.backup_dir) / backup_id).exists()


@pytest.mark.anyio
async def test_tampered_dump_is_refused(engine, seeded_factory, settings) -> None:
  backup_id = await _full_backup(engine, seeded_factory, settings)
  sql_path = Path(settings.backup_dir) / backup_id / f"{backup_id}.sql"
  with sql_path.open("a", encoding="utf-8") as handle:
    handle.write("-- edited by hand\n")

  with pytest.raises(BackupIntegrityError, match="checksum mismatch"):
    await RestoreEngine(engine=engine, settings=settings).restore(backup_id)

  outcome = await RestoreEngine(engine=engine, settings=replace(settings, restore_verify_checksums=False)).restore(backup_id)
  assert outcome.success is True


@pytest.mark.anyio
async def test_partial_restore_keeps_going_after_failures(engine, settings) -> None:
  backup_id = _manual_backup(settings)

  outcome = await RestoreEngine(engine=engine, settings=settings).restore(backup_id, RestoreMode.PARTIAL)

  assert outcome.success is False
  assert (outcome.statements_total, outcome.statements_succeeded, outcome.statements_failed) == (3, 2, 1)
  assert outcome.errors[0].startswith("Statement #2 failed")
  assert outcome.to_dict()["statementsFailed"] == 1
  assert await _count(engine, Kelas) == 2


@pytest.mark.anyio
async def test_atomic_restore_rolls_back_everything(engine, settings) -> None:
  backup_id = _manual_backup(settings)

  outcome = await RestoreEngine(engine=engine, settings=replace(settings, restore_mode="atomic")).restore(backup_id)

  assert outcome.mode is RestoreMode.ATOMIC
  assert outcome.success is False
  assert (outcome.statements_succeeded, outcome.statements_failed) == (0, 1)
  assert outcome.message == "Rolled back after statement #2 of 3 failed"
  assert await _count(engine, Kelas) == 0


@pytest.mark.anyio
async def test_unknown_backup_is_not_found(engine, settings) -> None:
  restore_engine = RestoreEngine(engine=engine, settings=settings)
  with pytest.raises(NotFoundError):
    await restore_engine.restore("semester_backup_missing")
  with pytest.raises(NotFoundError):
    await restore_engine.restore("../../etc")


@pytest.mark.anyio
async def test_directory_without_dump_falls_back_to_archive(engine, seeded_factory, settings) -> None:
  compressed = replace(settings, backup_compression_enabled=True)
  backup_id = await _full_backup(engine, seeded_factory, compressed)
  directory = Path(settings.backup_dir) / backup_id
  (directory / f"{backup_id}.sql").unlink()
  await _damage(seeded_factory)

  outcome = await RestoreEngine(engine=engine, settings=compressed).restore(backup_id)

  assert outcome.success is True
  assert outcome.source == "archive"
  assert await _count(engine, AbsensiSiswa) == 5
  assert directory.is_dir()


@pytest.mark.anyio
async def test_checksum_is_verified_off_the_event_loop(engine, seeded_factory, settings) -> None:
  backup_id = await _full_backup(engine, seeded_factory, settings)
  loop_thread = threading.get_ident()
  verifying_threads: list[int] = []

  def _recording_verify(*args, **kwargs):
    verifying_threads.append(threading.get_ident())
    return verify_manifest(*args, **kwargs)

  with patch("app.services.restore.verify_manifest", side_effect=_recording_verify):
    outcome = await RestoreEngine(engine=engine, settings=settings).restore(backup_id)

  assert outcome.success is True
  assert len(verifying_threads) == 1
  assert verifying_threads[0] != loop_thread
