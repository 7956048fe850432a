"""Replay a backup's SQL dump against the configured database."""

from __future__ import annotations

import asyncio
import enum
import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from app.config import Settings
from app.core.exceptions import BackupIntegrityError, NotFoundError, RestoreStatementError
from app.services.checksums import manifest_filename, read_manifest, verify_manifest
from app.utils.compression import extract_zip
from app.utils.ids import is_safe_identifier

logger = logging.getLogger(__name__)

_RAW_SQL_OPTIONS: dict[str, Any] = {"no_parameters": True}


class RestoreMode(enum.StrEnum):
  """How failures during replay are handled."""

  PARTIAL = "partial"  # commit per statement, keep going after failures
  ATOMIC = "atomic"  # one transaction, roll back on the first failure


@dataclass
class RestoreOutcome:
  backup_id: str
  success: bool
  mode: RestoreMode
  source: str
  statements_total: int = 0
  statements_succeeded: int = 0
  statements_failed: int = 0
  errors: list[str] = field(default_factory=list)
  message: str = ""

  def to_dict(self) -> dict[str, Any]:
    return {
      "backupId": self.backup_id,
      "success": self.success,
      "mode": self.mode.value,
      "source": self.source,
      "statementsTotal": self.statements_total,
      "statementsSucceeded": self.statements_succeeded,
      "statementsFailed": self.statements_failed,
      "errors": list(self.errors),
      "message": self.message,
    }


def split_sql_statements(script: str, *, backslash_escapes: bool = False) -> list[str]:
  """Split a dump into statements on `;`, ignoring semicolons inside quoted strings.

  Lines starting with `--` outside a string are comments and dropped. With
  `backslash_escapes` a backslash inside a string escapes the next character,
  matching MySQL's literal syntax.
  """
  statements: list[str] = []
  current: list[str] = []
  in_string = False
  escaped = False

  def _flush() -> None:
    statement = "".join(current).strip()
    if statement:
      statements.append(statement)
    current.clear()

  for line in script.splitlines(keepends=True):
    if not in_string and line.lstrip().startswith("--"):
      continue
    for char in line:
      if in_string:
        current.append(char)
        if escaped:
          escaped = False
        elif backslash_escapes and char == "\\":
          escaped = True
        elif char == "'":
          in_string = False
        continue
      if char == ";":
        _flush()
        continue
      if char == "'":
        in_string = True
      current.append(char)
  _flush()
  return statements


class RestoreEngine:
  """Locates a backup's SQL file and executes it statement by statement."""

  def __init__(self, *, engine: AsyncEngine, settings: Settings) -> None:
    self._engine = engine
    self._settings = settings

  @property
  def backup_dir(self) -> Path:
    return Path(self._settings.backup_dir)

  async def restore(self, backup_id: str, mode: RestoreMode | str | None = None) -> RestoreOutcome:
    resolved_mode = RestoreMode(mode or self._settings.restore_mode)
    if not is_safe_identifier(backup_id):
      raise NotFoundError(f"Backup not found: {backup_id}")

    directory_sql = self.backup_dir / backup_id / f"{backup_id}.sql"
    archive = self.backup_dir / f"{backup_id}.zip"
    if directory_sql.is_file():
      return await self._restore_file(backup_id, directory_sql, mode=resolved_mode, source="directory")
    if not archive.is_file():
      raise NotFoundError(f"Backup not found: {backup_id}")

    temp_dir = Path(tempfile.mkdtemp(prefix=f"restore_{backup_id}_"))
    try:
      await asyncio.to_thread(extract_zip, zip_path=archive, output_dir=temp_dir, password=self._settings.backup_zip_password)
      sql_path = next(temp_dir.rglob(f"{backup_id}.sql"), None)
      if sql_path is None:
        raise NotFoundError(f"Archive for backup {backup_id} contains no SQL dump")
      return await self._restore_file(backup_id, sql_path, mode=resolved_mode, source="archive")
    finally:
      await asyncio.to_thread(shutil.rmtree, temp_dir, ignore_errors=True)

  def _verify_checksum(self, backup_id: str, sql_path: Path) -> None:
    manifest_path = sql_path.parent / manifest_filename(backup_id)
    if not manifest_path.is_file():
      logger.warning("Backup %s has no manifest; restoring without checksum verification", backup_id)
      return
    manifest = read_manifest(manifest_path)
    problems = verify_manifest(manifest, sql_path.parent, names=[sql_path.name])
    if not problems:
      return
    message = f"Backup {backup_id} failed integrity check: {sql_path.name} ({problems[sql_path.name]})"
    if self._settings.restore_verify_checksums:
      raise BackupIntegrityError(message)
    logger.warning("%s; continuing because checksum verification is disabled", message)

  async def _restore_file(self, backup_id: str, sql_path: Path, *, mode: RestoreMode, source: str) -> RestoreOutcome:
    await asyncio.to_thread(self._verify_checksum, backup_id, sql_path)
    script = await asyncio.to_thread(sql_path.read_text, encoding="utf-8")
    statements = split_sql_statements(script, backslash_escapes=self._engine.dialect.name in {"mysql", "mariadb"})
    outcome = RestoreOutcome(backup_id=backup_id, success=False, mode=mode, source=source, statements_total=len(statements))
    logger.info("Restoring backup %s from %s (%d statements, mode=%s)", backup_id, source, len(statements), mode.value)

    async with self._engine.connect() as connection:
      if mode is RestoreMode.ATOMIC:
        await self._run_atomic(connection, statements, outcome)
      else:
        await self._run_partial(connection, statements, outcome)

    if outcome.success:
      logger.info("Backup %s restored: %s", backup_id, outcome.message)
    else:
      logger.error("Backup %s restore finished with failures: %s", backup_id, outcome.message)
    return outcome

  async def _run_partial(self, connection: AsyncConnection, statements: list[str], outcome: RestoreOutcome) -> None:
    for index, statement in enumerate(statements, start=1):
      try:
        await connection.exec_driver_sql(statement, execution_options=_RAW_SQL_OPTIONS)
        await connection.commit()
      except SQLAlchemyError as exc:
        await connection.rollback()
        error = RestoreStatementError(index, statement, exc)
        logger.warning("%s", error)
        outcome.errors.append(str(error))
        outcome.statements_failed += 1
        continue
      outcome.statements_succeeded += 1
    outcome.success = outcome.statements_failed == 0
    outcome.message = f"{outcome.statements_succeeded}/{outcome.statements_total} statements executed, {outcome.statements_failed} failed"

  async def _run_atomic(self, connection: AsyncConnection, statements: list[str], outcome: RestoreOutcome) -> None:
    # DDL commits implicitly on MySQL and under pysqlite, so rollback covers only what the dialect allows.
    try:
      async with connection.begin():
        for index, statement in enumerate(statements, start=1):
          try:
            await connection.exec_driver_sql(statement, execution_options=_RAW_SQL_OPTIONS)
          except SQLAlchemyError as exc:
            raise RestoreStatementError(index, statement, exc) from exc
          outcome.statements_succeeded += 1
    except RestoreStatementError as error:
      logger.warning("%s", error)
      outcome.errors.append(str(error))
      outcome.statements_failed = 1
      outcome.statements_succeeded = 0
      outcome.success = False
      outcome.message = f"Rolled back after statement #{error.index} of {outcome.statements_total} failed"
      return
    outcome.success = True
    outcome.message = f"{outcome.statements_succeeded}/{outcome.statements_total} statements executed in one transaction"
