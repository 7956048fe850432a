"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

RESTORE_MODES = ("partial", "atomic")


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Absenta core service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  db_dsn: str | None
  db_connect_timeout: int
  backup_dir: str
  download_dir: str
  archive_age_months: int
  max_backups: int
  download_max_age_hours: int
  backup_compression_enabled: bool
  backup_zip_password: str | None
  dump_batch_size: int
  restore_mode: str
  restore_verify_checksums: bool
  download_concurrency: int
  download_max_attempts: int
  download_backoff_ms: int
  download_keep_completed: int
  download_keep_failed: int
  report_concurrency: int
  report_max_attempts: int
  report_backoff_ms: int
  report_keep_completed: int
  report_keep_failed: int
  job_retry_max_delay_ms: int
  job_stall_threshold_seconds: float
  job_stall_check_interval_seconds: float
  job_estimate_base_seconds: int
  log_dir: str
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  db_dsn: str | None
  db_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("ABSENTA_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("ABSENTA_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_positive_int(name: str, default: str, *, allow_zero: bool = False) -> int:
  value = int(os.getenv(name, default))
  if value < 0 or (value == 0 and not allow_zero):
    qualifier = "zero or a positive integer" if allow_zero else "a positive integer"
    raise ValueError(f"{name} must be {qualifier}.")
  return value


def _parse_positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


def _resolve_dsn() -> str | None:
  # Prefer the namespaced variable and fall back to the conventional DATABASE_URL.
  return _optional_str(os.getenv("ABSENTA_DB_DSN")) or _optional_str(os.getenv("DATABASE_URL"))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("ABSENTA_ENV", "development").lower()
  debug = _parse_bool(os.getenv("ABSENTA_DEBUG"))

  backup_dir = os.getenv("ABSENTA_BACKUP_DIR", "./backups").strip()
  download_dir = os.getenv("ABSENTA_DOWNLOAD_DIR", "./downloads").strip()

  restore_mode = (os.getenv("ABSENTA_RESTORE_MODE") or "partial").strip().lower()
  if restore_mode not in RESTORE_MODES:
    raise ValueError(f"ABSENTA_RESTORE_MODE must be one of {', '.join(RESTORE_MODES)}.")

  # Defaults mirror the production queue sizing: wide pool for downloads, narrow pool for reports.
  download_concurrency = _parse_positive_int("ABSENTA_DOWNLOAD_CONCURRENCY", "80")
  report_concurrency = _parse_positive_int("ABSENTA_REPORT_CONCURRENCY", "5")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("ABSENTA_ALLOWED_ORIGINS")),
    db_dsn=_resolve_dsn(),
    db_connect_timeout=_parse_positive_int("ABSENTA_DB_CONNECT_TIMEOUT", "10"),
    backup_dir=backup_dir,
    download_dir=download_dir,
    archive_age_months=_parse_positive_int("ABSENTA_ARCHIVE_AGE_MONTHS", "24"),
    max_backups=_parse_positive_int("ABSENTA_MAX_BACKUPS", "10"),
    download_max_age_hours=_parse_positive_int("ABSENTA_DOWNLOAD_MAX_AGE_HOURS", "24"),
    backup_compression_enabled=_parse_bool(os.getenv("ABSENTA_BACKUP_COMPRESSION"), default=True),
    backup_zip_password=_optional_str(os.getenv("ABSENTA_BACKUP_ZIP_PASSWORD")),
    dump_batch_size=_parse_positive_int("ABSENTA_DUMP_BATCH_SIZE", "1000"),
    restore_mode=restore_mode,
    restore_verify_checksums=_parse_bool(os.getenv("ABSENTA_RESTORE_VERIFY_CHECKSUMS"), default=True),
    download_concurrency=download_concurrency,
    download_max_attempts=_parse_positive_int("ABSENTA_DOWNLOAD_MAX_ATTEMPTS", "3"),
    download_backoff_ms=_parse_positive_int("ABSENTA_DOWNLOAD_BACKOFF_MS", "2000", allow_zero=True),
    download_keep_completed=_parse_positive_int("ABSENTA_DOWNLOAD_KEEP_COMPLETED", "10", allow_zero=True),
    download_keep_failed=_parse_positive_int("ABSENTA_DOWNLOAD_KEEP_FAILED", "5", allow_zero=True),
    report_concurrency=report_concurrency,
    report_max_attempts=_parse_positive_int("ABSENTA_REPORT_MAX_ATTEMPTS", "2"),
    report_backoff_ms=_parse_positive_int("ABSENTA_REPORT_BACKOFF_MS", "1000", allow_zero=True),
    report_keep_completed=_parse_positive_int("ABSENTA_REPORT_KEEP_COMPLETED", "5", allow_zero=True),
    report_keep_failed=_parse_positive_int("ABSENTA_REPORT_KEEP_FAILED", "3", allow_zero=True),
    job_retry_max_delay_ms=_parse_positive_int("ABSENTA_JOB_RETRY_MAX_DELAY_MS", "60000"),
    job_stall_threshold_seconds=_parse_positive_float("ABSENTA_JOB_STALL_THRESHOLD_SECONDS", "30"),
    job_stall_check_interval_seconds=_parse_positive_float("ABSENTA_JOB_STALL_CHECK_INTERVAL_SECONDS", "15"),
    job_estimate_base_seconds=_parse_positive_int("ABSENTA_JOB_ESTIMATE_BASE_SECONDS", "30"),
    log_dir=os.getenv("ABSENTA_LOG_DIR", "./logs").strip(),
    log_max_bytes=_parse_positive_int("ABSENTA_LOG_MAX_BYTES", "5242880"),  # 5MB default
    log_backup_count=_parse_positive_int("ABSENTA_LOG_BACKUP_COUNT", "10", allow_zero=True),
    log_http_4xx=_parse_bool(os.getenv("ABSENTA_LOG_HTTP_4XX")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings needed to open a database connection."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("ABSENTA_DEBUG")), db_dsn=_resolve_dsn(), db_connect_timeout=_parse_positive_int("ABSENTA_DB_CONNECT_TIMEOUT", "10"))
