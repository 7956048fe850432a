"""Content hashing and backup manifest assembly."""

from __future__ import annotations

import hashlib
import json
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from app.core.exceptions import BackupIntegrityError

MANIFEST_VERSION = "1.0.0"
MANIFEST_SUFFIX = "_manifest.json"
_CHUNK_SIZE = 1024 * 1024


def sha256_file(path: Path) -> str:
  """Return sha256 for a file, read in fixed-size chunks."""
  hasher = hashlib.sha256()
  with path.open("rb") as handle:
    for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
      hasher.update(chunk)
  return hasher.hexdigest()


def manifest_filename(backup_id: str) -> str:
  return f"{backup_id}{MANIFEST_SUFFIX}"


@dataclass(frozen=True)
class BackupManifest:
  """Immutable record of one backup's files, digests and statistics."""

  backup_id: str
  backup_type: str
  scope: dict[str, Any]
  timestamp: str
  files: list[str]
  checksums: dict[str, str]
  statistics: dict[str, Any] = field(default_factory=dict)
  version: str = MANIFEST_VERSION
  system: dict[str, Any] = field(default_factory=dict)

  def to_dict(self) -> dict[str, Any]:
    return {
      "backupId": self.backup_id,
      "type": self.backup_type,
      "scope": self.scope,
      "timestamp": self.timestamp,
      "version": self.version,
      "system": self.system,
      "files": list(self.files),
      "statistics": self.statistics,
      "checksums": dict(self.checksums),
    }

  @classmethod
  def from_dict(cls, payload: dict[str, Any]) -> BackupManifest:
    return cls(
      backup_id=str(payload["backupId"]),
      backup_type=str(payload.get("type") or "unknown"),
      scope=dict(payload.get("scope") or {}),
      timestamp=str(payload.get("timestamp") or ""),
      files=[str(name) for name in payload.get("files") or []],
      checksums={str(name): str(digest) for name, digest in (payload.get("checksums") or {}).items()},
      statistics=dict(payload.get("statistics") or {}),
      version=str(payload.get("version") or MANIFEST_VERSION),
      system=dict(payload.get("system") or {}),
    )


def _system_info() -> dict[str, Any]:
  return {"python": platform.python_version(), "platform": platform.system().lower(), "hostname": platform.node(), "pid": os.getpid()}


def build_manifest(*, backup_dir: Path, backup_id: str, backup_type: str, scope: dict[str, Any], timestamp: str, statistics: dict[str, Any]) -> BackupManifest:
  """Hash every file in backup_dir except the manifest itself.

  Callers must only invoke this after all artifacts are closed.
  """
  own_name = manifest_filename(backup_id)
  files = [path.name for path in sorted(backup_dir.iterdir()) if path.is_file() and path.name != own_name]
  checksums = {name: sha256_file(backup_dir / name) for name in files}
  return BackupManifest(backup_id=backup_id, backup_type=backup_type, scope=scope, timestamp=timestamp, files=files, checksums=checksums, statistics=statistics, system=_system_info())


def write_manifest(manifest: BackupManifest, backup_dir: Path) -> Path:
  """Persist the manifest; an existing manifest is never overwritten."""
  path = backup_dir / manifest_filename(manifest.backup_id)
  with path.open("x", encoding="utf-8") as handle:
    json.dump(manifest.to_dict(), handle, indent=2, ensure_ascii=False, default=str)
  return path


def read_manifest(path: Path) -> BackupManifest:
  return BackupManifest.from_dict(json.loads(path.read_text(encoding="utf-8")))


def verify_manifest(manifest: BackupManifest, backup_dir: Path, *, names: list[str] | None = None) -> dict[str, str]:
  """Recompute digests; return {filename: problem} for every mismatch or missing file."""
  problems: dict[str, str] = {}
  for name in names if names is not None else manifest.files:
    expected = manifest.checksums.get(name)
    path = backup_dir / name
    if expected is None:
      problems[name] = "not listed in manifest"
    elif not path.is_file():
      problems[name] = "missing"
    elif sha256_file(path) != expected:
      problems[name] = "checksum mismatch"
  return problems


def ensure_manifest_integrity(manifest: BackupManifest, backup_dir: Path, *, names: list[str] | None = None) -> None:
  problems = verify_manifest(manifest, backup_dir, names=names)
  if problems:
    summary = ", ".join(f"{name} ({problem})" for name, problem in sorted(problems.items()))
    raise BackupIntegrityError(f"Backup {manifest.backup_id} failed integrity check: {summary}")
