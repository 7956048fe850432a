"""Job progress tracking passed to renderers as a plain progress sink."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from app.storage.jobs_repo import JobsRepository

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
  """Receives coarse completion percentages from long-running work."""

  def __call__(self, percent: float) -> None: ...


def _clamp_percent(percent: float) -> int:
  return int(min(max(round(percent), 0), 100))


class JobProgressTracker:
  """Monotonic progress for one attempt of one job.

  The tracker only touches in-memory state so it is safe to call from any
  coroutine on the queue's event loop without awaiting.
  """

  def __init__(self, *, job_id: str, jobs_repo: JobsRepository, attempt: int, clock: Callable[[], float] = time.time) -> None:
    self._job_id = job_id
    self._jobs_repo = jobs_repo
    self._attempt = attempt
    self._clock = clock
    self._percent = 0

  @property
  def percent(self) -> int:
    return self._percent

  @property
  def attempt(self) -> int:
    return self._attempt

  def __call__(self, percent: float) -> None:
    value = _clamp_percent(percent)
    # Never move backwards within an attempt; a lower value still counts as activity.
    if value > self._percent:
      self._percent = value
    record = self._jobs_repo.update_job(self._job_id, progress=self._percent, stalled=False, updated_at=self._clock())
    if record is None:
      logger.debug("Progress update for pruned job %s ignored", self._job_id)


def noop_progress(percent: float) -> None:
  """Progress sink for callers outside the job queue."""
  _ = percent
