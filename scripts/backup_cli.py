"""Operator CLI for backups, restores and attendance archiving."""

from __future__ import annotations

import argparse
import asyncio
import datetime
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Ensure repo root is on sys.path so local imports work when invoked directly.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.config import get_settings  # noqa: E402
from app.core.database import dispose_db_engine, get_session_factory, require_db_engine  # noqa: E402
from app.core.exceptions import AbsentaError  # noqa: E402
from app.core.logging import setup_logging  # noqa: E402
from app.services.backups import BackupOrchestrator, BackupSpec, DateRangeBackupSpec, ScheduledBackupSpec, SemesterBackupSpec  # noqa: E402
from app.services.maintenance import archive_old_data, cleanup_old_downloads  # noqa: E402
from app.services.restore import RestoreEngine, RestoreMode  # noqa: E402

logger = logging.getLogger("scripts.backup_cli")


def _parse_date(raw: str) -> datetime.date:
  try:
    return datetime.date.fromisoformat(raw)
  except ValueError as exc:
    raise argparse.ArgumentTypeError(f"Invalid date {raw!r}; expected YYYY-MM-DD.") from exc


def _build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(description="Create, list, restore and prune Absenta backups.")
  commands = parser.add_subparsers(dest="command", required=True)

  semester = commands.add_parser("create-semester", help="Back up one semester (defaults to the current one).")
  semester.add_argument("--semester", choices=["Ganjil", "Genap", "ganjil", "genap"], default=None)
  semester.add_argument("--year", type=int, default=None)

  date_range = commands.add_parser("create-range", help="Back up an explicit date range.")
  date_range.add_argument("start_date", type=_parse_date)
  date_range.add_argument("end_date", type=_parse_date)

  scheduled = commands.add_parser("create-scheduled", help="Run a named scheduled backup.")
  scheduled.add_argument("--name", default="default")

  commands.add_parser("list", help="List backups newest first.")

  delete = commands.add_parser("delete", help="Delete a backup directory and its zip.")
  delete.add_argument("backup_id")

  restore = commands.add_parser("restore", help="Replay a backup's SQL dump.")
  restore.add_argument("backup_id")
  restore.add_argument("--mode", choices=[mode.value for mode in RestoreMode], default=None)

  archive = commands.add_parser("archive", help="Move old attendance rows into the archive tables.")
  archive.add_argument("--months", type=int, default=None)
  archive.add_argument("--prune-live", action="store_true", help="Delete live rows once they are archived.")

  prune = commands.add_parser("prune", help="Keep only the newest backups and drop expired downloads.")
  prune.add_argument("--max-backups", type=int, default=None)
  return parser


def _print_json(payload: Any) -> None:
  print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _backup_spec(args: argparse.Namespace) -> BackupSpec:
  if args.command == "create-semester":
    return SemesterBackupSpec(semester=args.semester, year=args.year)
  if args.command == "create-range":
    return DateRangeBackupSpec(start_date=args.start_date, end_date=args.end_date)
  return ScheduledBackupSpec(name=args.name)


async def _run(args: argparse.Namespace) -> int:
  settings = get_settings()
  engine = require_db_engine()
  session_factory = get_session_factory()
  if session_factory is None:
    raise RuntimeError("Database connection is not configured (ABSENTA_DB_DSN is missing).")
  orchestrator = BackupOrchestrator(engine=engine, session_factory=session_factory, settings=settings)
  try:
    if args.command in {"create-semester", "create-range", "create-scheduled"}:
      manifest = await orchestrator.create_backup(_backup_spec(args))
      _print_json(manifest.to_dict())
    elif args.command == "list":
      _print_json([summary.to_dict() for summary in orchestrator.list_backups()])
    elif args.command == "delete":
      orchestrator.delete_backup(args.backup_id)
      print(f"Deleted {args.backup_id}")
    elif args.command == "restore":
      outcome = await RestoreEngine(engine=engine, settings=settings).restore(args.backup_id, args.mode)
      _print_json(outcome.to_dict())
      return 0 if outcome.success else 2
    elif args.command == "archive":
      report = await archive_old_data(engine, args.months or settings.archive_age_months, prune_live=args.prune_live)
      _print_json(report.to_dict())
    elif args.command == "prune":
      removed = orchestrator.prune_old_backups(args.max_backups)
      expired = cleanup_old_downloads(Path(settings.download_dir), settings.download_max_age_hours)
      _print_json({"removedBackups": removed, "removedDownloads": expired})
  finally:
    await dispose_db_engine()
  return 0


def main() -> None:
  """Parse arguments, run one command and exit with its status."""
  args = _build_parser().parse_args()
  setup_logging(get_settings())
  try:
    exit_code = asyncio.run(_run(args))
  except AbsentaError as exc:
    print(f"ERROR: {exc}", file=sys.stderr)
    sys.exit(1)
  sys.exit(exit_code)


if __name__ == "__main__":
  try:
    main()
  except Exception:
    logger.exception("Backup CLI failed")
    raise
