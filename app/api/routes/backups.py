"""Admin APIs for database backups, restores and attendance archiving."""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Any, Literal

import msgspec
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.responses import Response

from app.api.deps import get_backup_orchestrator, get_engine, get_restore_engine
from app.api.models import ArchiveRequest
from app.api.msgspec_utils import decode_msgspec_request, encode_msgspec_response
from app.config import Settings, get_settings
from app.services.backups import BackupOrchestrator, BackupSpec, DateRangeBackupSpec, ScheduledBackupSpec, SemesterBackupSpec
from app.services.maintenance import archive_old_data
from app.services.restore import RestoreEngine
from app.utils.dates import normalize_semester

router = APIRouter()
logger = logging.getLogger(__name__)


class BackupCreateRequest(msgspec.Struct, forbid_unknown_fields=True):
  """Request payload for creating a backup; fields depend on `type`."""

  type: Literal["semester", "date-range", "scheduled"]
  semester: str | None = None
  year: int | None = None
  start_date: datetime.date | None = None
  end_date: datetime.date | None = None
  name: str | None = None


class BackupCreatedResponse(msgspec.Struct):
  success: bool
  backup_id: str
  manifest: dict[str, Any]


class BackupListResponse(msgspec.Struct):
  items: list[dict[str, Any]]
  total: int


class BackupDeletedResponse(msgspec.Struct):
  success: bool
  backup_id: str


class RestoreRequest(msgspec.Struct, forbid_unknown_fields=True):
  mode: Literal["partial", "atomic"] | None = None


class RestoreResponse(msgspec.Struct):
  """Outcome of one restore run."""

  backup_id: str
  success: bool
  mode: str
  source: str
  statements_total: int
  statements_succeeded: int
  statements_failed: int
  errors: list[str]
  message: str


class PruneRequest(msgspec.Struct, forbid_unknown_fields=True):
  max_backups: int | None = None


class PruneResponse(msgspec.Struct):
  removed: list[str]
  kept: int


def _to_spec(payload: BackupCreateRequest) -> BackupSpec:
  """Map the flat request body onto a typed backup spec."""
  if payload.type == "semester":
    semester = payload.semester
    if semester is not None:
      try:
        semester = normalize_semester(semester)
      except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return SemesterBackupSpec(semester=semester, year=payload.year)
  if payload.type == "date-range":
    if payload.start_date is None or payload.end_date is None:
      raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="start_date and end_date are required for date-range backups")
    if payload.start_date > payload.end_date:
      raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="start_date must not be after end_date")
    return DateRangeBackupSpec(start_date=payload.start_date, end_date=payload.end_date)
  return ScheduledBackupSpec(name=payload.name or "default")


@router.post("/backups")
async def create_backup(request: Request, orchestrator: BackupOrchestrator = Depends(get_backup_orchestrator)) -> Response:  # noqa: B008
  """Run a backup synchronously and return its manifest."""
  payload = await decode_msgspec_request(request, BackupCreateRequest)
  manifest = await orchestrator.create_backup(_to_spec(payload))
  return encode_msgspec_response(BackupCreatedResponse(success=True, backup_id=manifest.backup_id, manifest=manifest.to_dict()), status_code=status.HTTP_201_CREATED)


@router.get("/backups")
async def list_backups(orchestrator: BackupOrchestrator = Depends(get_backup_orchestrator)) -> Response:  # noqa: B008
  """List backups newest first."""
  items = [summary.to_dict() for summary in await asyncio.to_thread(orchestrator.list_backups)]
  return encode_msgspec_response(BackupListResponse(items=items, total=len(items)))


@router.delete("/backups/{backup_id}")
async def delete_backup(backup_id: str, orchestrator: BackupOrchestrator = Depends(get_backup_orchestrator)) -> Response:  # noqa: B008
  await asyncio.to_thread(orchestrator.delete_backup, backup_id)
  return encode_msgspec_response(BackupDeletedResponse(success=True, backup_id=backup_id))


@router.post("/backups/prune")
async def prune_backups(request: Request, orchestrator: BackupOrchestrator = Depends(get_backup_orchestrator), settings: Settings = Depends(get_settings)) -> Response:  # noqa: B008
  """Delete backups beyond the newest `max_backups`."""
  payload = await decode_msgspec_request(request, PruneRequest, allow_empty=True)
  keep = payload.max_backups if payload.max_backups is not None else settings.max_backups
  if keep < 0:
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="max_backups must not be negative")
  removed = await asyncio.to_thread(orchestrator.prune_old_backups, keep)
  return encode_msgspec_response(PruneResponse(removed=removed, kept=keep))


@router.post("/backups/{backup_id}/restore")
async def restore_backup(backup_id: str, request: Request, restore_engine: RestoreEngine = Depends(get_restore_engine)) -> Response:  # noqa: B008
  """Replay a backup's SQL dump; a partial restore reports per-statement failures."""
  payload = await decode_msgspec_request(request, RestoreRequest, allow_empty=True)
  outcome = await restore_engine.restore(backup_id, payload.mode)
  response = RestoreResponse(
    backup_id=outcome.backup_id,
    success=outcome.success,
    mode=outcome.mode.value,
    source=outcome.source,
    statements_total=outcome.statements_total,
    statements_succeeded=outcome.statements_succeeded,
    statements_failed=outcome.statements_failed,
    errors=outcome.errors,
    message=outcome.message,
  )
  return encode_msgspec_response(response)


@router.get("/backups/{backup_id}/download")
async def download_backup(backup_id: str, orchestrator: BackupOrchestrator = Depends(get_backup_orchestrator)) -> FileResponse:  # noqa: B008
  path = orchestrator.get_backup_archive_path(backup_id)
  return FileResponse(path, media_type="application/zip", filename=path.name)


@router.post("/archive")
async def archive_attendance(payload: ArchiveRequest, engine: AsyncEngine = Depends(get_engine), settings: Settings = Depends(get_settings)) -> dict[str, Any]:  # noqa: B008
  """Move old attendance rows into the archive tables."""
  months = payload.months or settings.archive_age_months
  report = await archive_old_data(engine, months, prune_live=payload.prune_live)
  logger.info("Manual archive run: months=%d moved=%d prune_live=%s", months, report.total_moved, payload.prune_live)
  return {"success": True, **report.to_dict()}
