from __future__ import annotations

import hashlib
from pathlib import Path

import pytest

from app.core.exceptions import BackupIntegrityError
from app.services.checksums import build_manifest, ensure_manifest_integrity, manifest_filename, read_manifest, sha256_file, verify_manifest, write_manifest


def _backup_dir(tmp_path: Path) -> Path:
  directory = tmp_path / "date_backup_x"
  directory.mkdir()
  (directory / "date_backup_x.sql").write_text("SELECT 1;\n", encoding="utf-8")
  (directory / "date_backup_x_export.xlsx").write_bytes(b"PK\x03\x04fake")
  return directory


def test_manifest_lists_every_artifact_with_its_digest(tmp_path: Path) -> None:
  directory = _backup_dir(tmp_path)
  manifest = build_manifest(backup_dir=directory, backup_id="date_backup_x", backup_type="date-range", scope={"days": 3}, timestamp="2025-08-04T07:30:00+00:00", statistics={"total_rows": 0})

  assert manifest.files == ["date_backup_x.sql", "date_backup_x_export.xlsx"]
  assert manifest.checksums["date_backup_x.sql"] == hashlib.sha256(b"SELECT 1;\n").hexdigest()
  assert sha256_file(directory / "date_backup_x_export.xlsx") == manifest.checksums["date_backup_x_export.xlsx"]

  path = write_manifest(manifest, directory)
  assert path.name == manifest_filename("date_backup_x")
  loaded = read_manifest(path)
  assert loaded.to_dict() == manifest.to_dict()
  assert verify_manifest(loaded, directory) == {}

  rebuilt = build_manifest(backup_dir=directory, backup_id="date_backup_x", backup_type="date-range", scope={}, timestamp="", statistics={})
  assert manifest_filename("date_backup_x") not in rebuilt.files


def test_manifest_is_never_overwritten(tmp_path: Path) -> None:
  directory = _backup_dir(tmp_path)
  manifest = build_manifest(backup_dir=directory, backup_id="date_backup_x", backup_type="date-range", scope={}, timestamp="t", statistics={})
  write_manifest(manifest, directory)
  with pytest.raises(FileExistsError):
    write_manifest(manifest, directory)


def test_tampered_and_missing_files_are_reported(tmp_path: Path) -> None:
  directory = _backup_dir(tmp_path)
  manifest = build_manifest(backup_dir=directory, backup_id="date_backup_x", backup_type="date-range", scope={}, timestamp="t", statistics={})
  (directory / "date_backup_x.sql").write_text("DROP TABLE users;\n", encoding="utf-8")
  (directory / "date_backup_x_export.xlsx").unlink()

  assert verify_manifest(manifest, directory) == {"date_backup_x.sql": "checksum mismatch", "date_backup_x_export.xlsx": "missing"}
  assert verify_manifest(manifest, directory, names=["other.sql"]) == {"other.sql": "not listed in manifest"}
  with pytest.raises(BackupIntegrityError, match="checksum mismatch"):
    ensure_manifest_integrity(manifest, directory)
