import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import urlparse

from fastapi import FastAPI

from app.config import Settings
from app.core.database import dispose_db_engine, get_session_factory
from app.core.logging import _initialize_logging
from app.jobs.worker import JobQueueService
from app.services.maintenance import cleanup_old_downloads
from app.services.report_renderer import ReportRenderer, build_report_registry

DOWNLOAD_CLEANUP_INTERVAL_SECONDS = 3600


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Initialize logging, start the export queue and stop it again on shutdown."""
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")
  _initialize_logging(settings)
  logger.info("Starting with database %s", _redact_dsn(settings.db_dsn))

  job_queue = _build_job_queue(settings)
  if job_queue is None:
    logger.warning("Database connection is not configured; export queue disabled.")
  else:
    await job_queue.start()
  app.state.job_queue = job_queue
  cleanup_task = asyncio.create_task(_cleanup_downloads_periodically(settings), name="download-cleanup")
  logger.info("Startup complete.")

  try:
    yield
  finally:
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
      await cleanup_task
    if job_queue is not None:
      await job_queue.stop()
    app.state.job_queue = None
    await dispose_db_engine()
    logger.info("Shutdown complete.")


def _build_job_queue(settings: Settings) -> JobQueueService | None:
  """Wire the spreadsheet renderer into a queue service; None without a database."""
  session_factory = get_session_factory()
  if session_factory is None:
    return None
  renderer = ReportRenderer(session_factory, Path(settings.download_dir))
  return JobQueueService(registry=build_report_registry(renderer), settings=settings)


async def _cleanup_downloads_periodically(settings: Settings) -> None:
  logger = logging.getLogger("app.core.lifespan")
  while True:
    try:
      await asyncio.to_thread(cleanup_old_downloads, Path(settings.download_dir), settings.download_max_age_hours)
    except OSError:
      logger.warning("Download cleanup failed", exc_info=True)
    await asyncio.sleep(DOWNLOAD_CLEANUP_INTERVAL_SECONDS)


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
