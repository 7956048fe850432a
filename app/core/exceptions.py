import logging
from typing import Any

from app.config import Settings
from app.core.json import DecimalJSONResponse
from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError


class AbsentaError(Exception):
  """Base class for errors raised by the queue and backup core."""


class JobValidationError(AbsentaError):
  """A job payload was rejected before it was enqueued."""

  def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
    super().__init__(message)
    self.errors = errors or []


class TransientExecutionError(AbsentaError):
  """A job attempt failed in a way the retry policy may recover from."""


class TerminalExecutionError(AbsentaError):
  """A job exhausted its attempts; the message carries the last failure."""


class BackupStepError(AbsentaError):
  """A fatal backup step failure; no manifest is published for the backup."""

  def __init__(self, step: str, message: str) -> None:
    super().__init__(f"Backup step '{step}' failed: {message}")
    self.step = step


class BackupIntegrityError(AbsentaError):
  """A backup file no longer matches the digest recorded in its manifest."""


class RestoreStatementError(AbsentaError):
  """One replayed SQL statement failed; restore continues in partial mode."""

  def __init__(self, index: int, statement: str, cause: BaseException) -> None:
    preview = " ".join(statement.split())[:120]
    super().__init__(f"Statement #{index} failed ({type(cause).__name__}: {cause}): {preview}")
    self.index = index
    self.statement = statement


class NotFoundError(AbsentaError):
  """Unknown job id, unknown backup id, or missing backup files."""


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  """Build a safe error payload that avoids leaking internal details to clients."""
  payload: dict[str, Any] = {"detail": detail}
  # Attach a request id so support can correlate client reports to server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: list[dict[str, Any]] | Any) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key not in {"input", "url"}}
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


def _settings() -> Settings:
  from app.config import get_settings

  return get_settings()


async def global_exception_handler(request: Request, exc: Exception) -> DecimalJSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return DecimalJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> DecimalJSONResponse:
  """Log request validation errors for debugging without leaking payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  # Keep validation logs concise because 422s are client-correctable and expected.
  logger = logging.getLogger("uvicorn.error")
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return DecimalJSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> DecimalJSONResponse:
  """Handle FastAPI HTTPExceptions while avoiding leaking internal diagnostics."""
  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger = logging.getLogger("uvicorn.error")
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail, exc_info=True)
    return DecimalJSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  if _settings().log_http_4xx:
    logger = logging.getLogger("uvicorn.error")
    logger.warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  return DecimalJSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id))


async def job_validation_exception_handler(request: Request, exc: JobValidationError) -> DecimalJSONResponse:
  """Return 422 for payloads rejected at submission time."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors)
  logging.getLogger("uvicorn.error").warning("Job payload rejected request_id=%s path=%s errors=%s", request_id, request.url.path, sanitized_errors)
  detail: Any = sanitized_errors or str(exc)
  return DecimalJSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_error_payload(detail, request_id=request_id))


async def not_found_exception_handler(request: Request, exc: NotFoundError) -> DecimalJSONResponse:
  """Map unknown jobs and backups to 404."""
  request_id = getattr(request.state, "request_id", None)
  return DecimalJSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=_error_payload(str(exc), request_id=request_id))


async def backup_exception_handler(request: Request, exc: AbsentaError) -> DecimalJSONResponse:
  """Return a structured failure outcome for backup and restore errors."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Backup operation failed request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  # Backup reasons name the failing step and carry no row data, so they are safe to return.
  return DecimalJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload({"success": False, "reason": str(exc)}, request_id=request_id))
