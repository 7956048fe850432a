"""Storage for background job records."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Protocol

from app.jobs.models import JobCategory, JobRecord, JobState

logger = logging.getLogger(__name__)


class JobsRepository(Protocol):
  """Repository contract for job persistence."""

  def create_job(self, record: JobRecord) -> None:
    """Persist an initial job record."""

  def get_job(self, job_id: str) -> JobRecord | None:
    """Fetch a job by identifier."""

  def update_job(self, job_id: str, **changes: Any) -> JobRecord | None:
    """Apply partial updates to a job."""

  def list_jobs(self, *, category: JobCategory | None = None, state: JobState | None = None) -> list[JobRecord]:
    """Return jobs in creation order with optional filters."""

  def prune_terminal(self, category: JobCategory, *, keep_completed: int, keep_failed: int) -> list[str]:
    """Drop the oldest terminal jobs beyond the retention counts and return their ids."""


class InMemoryJobsRepository:
  """Process-local job store; records live as long as the queue service."""

  def __init__(self) -> None:
    self._records: OrderedDict[str, JobRecord] = OrderedDict()

  def create_job(self, record: JobRecord) -> None:
    if record.job_id in self._records:
      raise ValueError(f"Job {record.job_id} already exists.")
    self._records[record.job_id] = record

  def get_job(self, job_id: str) -> JobRecord | None:
    return self._records.get(job_id)

  def update_job(self, job_id: str, **changes: Any) -> JobRecord | None:
    record = self._records.get(job_id)
    if record is None:
      return None
    updated = replace(record, **changes)
    self._records[job_id] = updated
    return updated

  def list_jobs(self, *, category: JobCategory | None = None, state: JobState | None = None) -> list[JobRecord]:
    return [record for record in self._records.values() if (category is None or record.category == category) and (state is None or record.state == state)]

  def prune_terminal(self, category: JobCategory, *, keep_completed: int, keep_failed: int) -> list[str]:
    pruned: list[str] = []
    for state, keep in (("completed", keep_completed), ("failed", keep_failed)):
      finished = [record for record in self._records.values() if record.category == category and record.state == state]
      # Oldest finishers go first; ties fall back to creation order.
      finished.sort(key=lambda record: (record.finished_at or 0.0, record.sequence))
      excess = len(finished) - keep
      for record in finished[: max(excess, 0)]:
        del self._records[record.job_id]
        pruned.append(record.job_id)
    if pruned:
      logger.debug("Pruned %d terminal %s jobs", len(pruned), category)
    return pruned

  def __len__(self) -> int:
    return len(self._records)
