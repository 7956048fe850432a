"""Zip packaging for backup directories."""

from __future__ import annotations

import shutil
from pathlib import Path

import pyzipper


def collect_relative_files(root: Path) -> list[Path]:
  """Collect file-only relative paths under root in stable order."""
  files: list[Path] = []
  for path in sorted(root.rglob("*")):
    if path.is_file():
      files.append(path.relative_to(root))
  return files


def zip_directory(*, source_dir: Path, output_path: Path, arc_root: str | None = None, password: str | None = None) -> Path:
  """Zip every file under source_dir, AES-encrypted when a password is given.

  Members are stored as `<arc_root>/<relative path>` so an extracted archive
  recreates the backup folder layout.
  """
  arc_root = arc_root if arc_root is not None else source_dir.name
  output_path.parent.mkdir(parents=True, exist_ok=True)
  partial_path = output_path.with_name(output_path.name + ".partial")
  if password:
    archive_ctx = pyzipper.AESZipFile(partial_path, mode="w", compression=pyzipper.ZIP_DEFLATED, encryption=pyzipper.WZ_AES)
  else:
    archive_ctx = pyzipper.ZipFile(partial_path, mode="w", compression=pyzipper.ZIP_DEFLATED)
  try:
    with archive_ctx as archive:
      if password:
        archive.setpassword(password.encode("utf-8"))
      for rel_path in collect_relative_files(source_dir):
        arcname = f"{arc_root}/{rel_path.as_posix()}" if arc_root else rel_path.as_posix()
        archive.write(source_dir / rel_path, arcname=arcname)
  except BaseException:
    partial_path.unlink(missing_ok=True)
    raise
  # Publish atomically so readers never see a half-written archive.
  partial_path.replace(output_path)
  return output_path


def extract_zip(*, zip_path: Path, output_dir: Path, password: str | None = None) -> list[Path]:
  """Extract a zip into output_dir, rejecting members that escape it."""
  output_root = output_dir.resolve()
  output_root.mkdir(parents=True, exist_ok=True)
  extracted: list[Path] = []
  with pyzipper.AESZipFile(zip_path, mode="r") as archive:
    if password:
      archive.setpassword(password.encode("utf-8"))
    for member in archive.infolist():
      member_name = member.filename
      if member_name.startswith("/") or ".." in Path(member_name).parts:
        raise RuntimeError(f"Unsafe path in zip member: {member_name}")
      target_path = (output_root / member_name).resolve()
      if output_root not in target_path.parents and target_path != output_root:
        raise RuntimeError(f"Unsafe extraction target for zip member: {member_name}")
      if member.is_dir():
        target_path.mkdir(parents=True, exist_ok=True)
        continue
      target_path.parent.mkdir(parents=True, exist_ok=True)
      with archive.open(member, "r") as source, target_path.open("wb") as destination:
        shutil.copyfileobj(source, destination)
      extracted.append(target_path)
  return extracted
