"""Shared FastAPI dependencies for the queue and backup services."""

from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import Settings, get_settings
from app.core.database import get_db_engine, get_session_factory
from app.jobs.worker import JobQueueService
from app.services.backups import BackupOrchestrator
from app.services.restore import RestoreEngine

logger = logging.getLogger(__name__)


def get_job_queue(request: Request) -> JobQueueService:
  """Return the queue service started by the lifespan."""
  job_queue = getattr(request.app.state, "job_queue", None)
  if job_queue is None:
    logger.error("Job queue requested before startup completed")
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Job queue is not running")
  return job_queue


def get_engine() -> AsyncEngine:
  """Return the shared engine or 503 when no DSN is configured."""
  engine = get_db_engine()
  if engine is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database connection is not configured")
  return engine


def get_backup_orchestrator(engine: AsyncEngine = Depends(get_engine), settings: Settings = Depends(get_settings)) -> BackupOrchestrator:  # noqa: B008
  session_factory = get_session_factory()
  if session_factory is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database connection is not configured")
  return BackupOrchestrator(engine=engine, session_factory=session_factory, settings=settings)


def get_restore_engine(engine: AsyncEngine = Depends(get_engine), settings: Settings = Depends(get_settings)) -> RestoreEngine:  # noqa: B008
  return RestoreEngine(engine=engine, settings=settings)
