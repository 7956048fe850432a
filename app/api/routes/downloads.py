import logging
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import FileResponse

from app.api.deps import get_job_queue
from app.api.models import JobHandleResponse, JobStatusResponse, JobSubmitRequest
from app.config import Settings, get_settings
from app.core.exceptions import NotFoundError
from app.jobs.worker import JobQueueService
from app.utils.ids import is_safe_identifier

router = APIRouter()
logger = logging.getLogger("app.api.routes.downloads")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.post("/jobs", response_model=JobHandleResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(  # noqa: B008
  request: JobSubmitRequest,
  job_queue: JobQueueService = Depends(get_job_queue),  # noqa: B008
) -> JobHandleResponse:
  """Queue a spreadsheet export and return immediately."""
  handle = await job_queue.submit(request.category, request.job_type, request.payload, user_id=request.user_id, user_role=request.user_role)
  logger.info("Queued %s job %s (priority=%s, position=%s)", handle.job_type, handle.job_id, handle.priority, handle.queue_position)
  return JobHandleResponse.from_handle(handle)


@router.get("/jobs/{job_id}", response_model=JobStatusResponse)
async def get_job_status(  # noqa: B008
  job_id: str,
  job_queue: JobQueueService = Depends(get_job_queue),  # noqa: B008
) -> JobStatusResponse:
  """Fetch the state, progress and result of an export job."""
  return JobStatusResponse.from_view(job_queue.get_status(job_id))


@router.get("/stats")
async def get_queue_stats(job_queue: JobQueueService = Depends(get_job_queue)) -> dict[str, Any]:  # noqa: B008
  """Per-category queue depth and throughput counters."""
  return job_queue.statistics()


@router.get("/files/{filename}")
async def download_file(  # noqa: B008
  filename: str,
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> FileResponse:
  """Stream a generated spreadsheet."""
  if not is_safe_identifier(filename):
    raise NotFoundError(f"File not found: {filename}")
  path = Path(settings.download_dir) / filename
  if not path.is_file():
    raise NotFoundError(f"File not found: {filename}")
  return FileResponse(path, media_type=XLSX_MEDIA_TYPE, filename=filename)
