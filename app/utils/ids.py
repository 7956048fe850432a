"""Identifier utilities."""

from __future__ import annotations

import datetime
import re
import secrets
import string
import uuid

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_nanoid(size: int = 16) -> str:
  """Return a short non-sequential id suitable for public references."""
  alphabet = string.ascii_letters + string.digits
  return "".join(secrets.choice(alphabet) for _ in range(size))


def filename_timestamp(moment: datetime.datetime | None = None) -> str:
  """UTC timestamp safe for filenames, e.g. 2025-07-01T08-30-00-123456Z."""
  moment = moment or datetime.datetime.now(datetime.UTC)
  return moment.astimezone(datetime.UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def sanitize_name(value: str) -> str:
  """Reduce free text to a filename-safe slug."""
  cleaned = _UNSAFE_NAME_CHARS.sub("-", value.strip()).strip("-")
  return cleaned or "unnamed"


def generate_backup_id(kind: str, *, schedule_name: str | None = None, moment: datetime.datetime | None = None) -> str:
  """Backup ids are a type tag plus timestamp: semester_backup_*, date_backup_*, scheduled_<name>_*."""
  stamp = filename_timestamp(moment)
  if kind == "scheduled":
    return f"scheduled_{sanitize_name(schedule_name or 'default')}_{stamp}"
  if kind == "semester":
    return f"semester_backup_{stamp}"
  if kind == "date-range":
    return f"date_backup_{stamp}"
  raise ValueError(f"Unknown backup kind: {kind}")


def is_safe_identifier(value: str) -> bool:
  """True when `value` can be used as a single path component."""
  return bool(value) and value not in {".", ".."} and _UNSAFE_NAME_CHARS.search(value.replace(".", "")) is None
