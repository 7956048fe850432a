from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import backups, downloads
from app.config import get_settings
from app.core.exceptions import (
  BackupIntegrityError,
  BackupStepError,
  JobValidationError,
  NotFoundError,
  backup_exception_handler,
  global_exception_handler,
  http_exception_handler,
  job_validation_exception_handler,
  not_found_exception_handler,
  request_validation_exception_handler,
)
from app.core.json import DecimalJSONResponse
from app.core.lifespan import lifespan
from app.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="Absenta Core", default_response_class=DecimalJSONResponse, lifespan=lifespan)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "content-disposition"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(JobValidationError, job_validation_exception_handler)
app.add_exception_handler(NotFoundError, not_found_exception_handler)
app.add_exception_handler(BackupStepError, backup_exception_handler)
app.add_exception_handler(BackupIntegrityError, backup_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, object]:
  """Return a simple health status including whether the export queue runs."""
  job_queue = getattr(app.state, "job_queue", None)
  return {"status": "ok", "version": "0.1.0", "queue_running": bool(job_queue is not None and job_queue.running)}


app.include_router(downloads.router, prefix="/v1/downloads", tags=["downloads"])
app.include_router(backups.router, prefix="/admin", tags=["admin"])
