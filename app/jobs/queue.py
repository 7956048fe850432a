"""Per-category priority queue and retry policy."""

from __future__ import annotations

import asyncio
import heapq
from collections import Counter
from dataclasses import dataclass
from typing import Literal

from app.config import Settings
from app.jobs.models import JobCategory

BackoffKind = Literal["exponential", "fixed"]


@dataclass(frozen=True)
class CategoryPolicy:
  """Concurrency, retry and retention settings for one job category."""

  category: JobCategory
  max_concurrency: int
  max_attempts: int
  backoff: BackoffKind
  backoff_ms: int
  max_backoff_ms: int
  keep_completed: int
  keep_failed: int

  def retry_delay_seconds(self, failed_attempts: int) -> float:
    """Delay before the next attempt after `failed_attempts` failures."""
    if self.backoff == "fixed":
      delay_ms = self.backoff_ms
    else:
      delay_ms = self.backoff_ms * (2 ** max(failed_attempts - 1, 0))
    return min(delay_ms, self.max_backoff_ms) / 1000.0


def policies_from_settings(settings: Settings) -> dict[JobCategory, CategoryPolicy]:
  """Build the download and report-generation policies from settings."""
  return {
    "download": CategoryPolicy(
      category="download",
      max_concurrency=settings.download_concurrency,
      max_attempts=settings.download_max_attempts,
      backoff="exponential",
      backoff_ms=settings.download_backoff_ms,
      max_backoff_ms=settings.job_retry_max_delay_ms,
      keep_completed=settings.download_keep_completed,
      keep_failed=settings.download_keep_failed,
    ),
    "report-generation": CategoryPolicy(
      category="report-generation",
      max_concurrency=settings.report_concurrency,
      max_attempts=settings.report_max_attempts,
      backoff="fixed",
      backoff_ms=settings.report_backoff_ms,
      max_backoff_ms=settings.job_retry_max_delay_ms,
      keep_completed=settings.report_keep_completed,
      keep_failed=settings.report_keep_failed,
    ),
  }


class CategoryQueue:
  """Runnable jobs of one category ordered by (priority, arrival)."""

  def __init__(self, category: JobCategory) -> None:
    self.category = category
    self._heap: list[tuple[int, int, str]] = []
    self._condition = asyncio.Condition()

  async def put(self, job_id: str, *, priority: int, sequence: int) -> None:
    async with self._condition:
      heapq.heappush(self._heap, (priority, sequence, job_id))
      self._condition.notify()

  async def get(self) -> str:
    """Wait for and pop the most urgent job id."""
    async with self._condition:
      await self._condition.wait_for(lambda: bool(self._heap))
      _, _, job_id = heapq.heappop(self._heap)
      return job_id

  def position(self, job_id: str) -> int | None:
    """1-based dispatch position, or None when the job is not waiting here."""
    ordered = sorted(self._heap)
    for index, (_, _, queued_id) in enumerate(ordered, start=1):
      if queued_id == job_id:
        return index
    return None

  def depth_by_priority(self) -> dict[int, int]:
    return dict(sorted(Counter(priority for priority, _, _ in self._heap).items()))

  def __len__(self) -> int:
    return len(self._heap)
