"""Dependency-injected job handler dispatch."""

from __future__ import annotations

from typing import Any, Protocol

from app.jobs.models import JobRecord
from app.jobs.progress import ProgressSink


class JobProcessorHandler(Protocol):
  """Handler contract for one job type."""

  async def process(self, job: JobRecord, progress: ProgressSink) -> dict[str, Any]:
    """Run one attempt of the job and return its result payload."""


class JobProcessorRegistry:
  """Registry mapping job types to handlers."""

  def __init__(self, handlers: dict[str, JobProcessorHandler]) -> None:
    self._handlers = dict(handlers)

  def resolve(self, job_type: str) -> JobProcessorHandler:
    """Resolve the handler for a job type."""
    handler = self._handlers.get(job_type)
    if handler is None:
      raise ValueError(f"Unsupported job type: {job_type}")
    return handler


async def process_job(job: JobRecord, registry: JobProcessorRegistry, progress: ProgressSink) -> dict[str, Any]:
  """Dispatch one attempt to the registered handler."""
  handler = registry.resolve(job.job_type)
  return await handler.process(job, progress)
