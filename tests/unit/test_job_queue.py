"""Unit tests for priority ordering, retry backoff and job retention."""

from __future__ import annotations

from dataclasses import replace

import pytest

from app.jobs.models import JobRecord, priority_for_role
from app.jobs.queue import CategoryPolicy, CategoryQueue, policies_from_settings
from app.jobs.worker import estimate_processing_seconds
from app.storage.jobs_repo import InMemoryJobsRepository


@pytest.mark.parametrize(("role", "expected"), [("admin", 1), ("Guru", 2), ("teacher", 2), ("siswa", 3), ("student", 3), ("kepala sekolah", 3), (None, 3), ("", 3)])
def test_priority_for_role(role: str | None, expected: int) -> None:
  assert priority_for_role(role) == expected


@pytest.mark.anyio
async def test_queue_orders_by_priority_then_arrival() -> None:
  queue = CategoryQueue("download")
  await queue.put("siswa-1", priority=3, sequence=1)
  await queue.put("guru-1", priority=2, sequence=2)
  await queue.put("siswa-2", priority=3, sequence=3)
  await queue.put("admin-1", priority=1, sequence=4)

  assert queue.position("admin-1") == 1
  assert queue.position("siswa-2") == 4
  assert queue.position("unknown") is None
  assert queue.depth_by_priority() == {1: 1, 2: 1, 3: 2}

  popped = [await queue.get() for _ in range(4)]
  assert popped == ["admin-1", "guru-1", "siswa-1", "siswa-2"]
  assert len(queue) == 0


@pytest.mark.anyio
async def test_requeued_job_keeps_its_arrival_slot() -> None:
  queue = CategoryQueue("download")
  await queue.put("later", priority=2, sequence=7)
  await queue.put("retried", priority=2, sequence=3)
  assert await queue.get() == "retried"


def test_exponential_backoff_doubles_and_caps() -> None:
  policy = CategoryPolicy(category="download", max_concurrency=1, max_attempts=5, backoff="exponential", backoff_ms=2000, max_backoff_ms=5000, keep_completed=1, keep_failed=1)
  assert [policy.retry_delay_seconds(attempt) for attempt in (1, 2, 3, 4)] == [2.0, 4.0, 5.0, 5.0]


def test_fixed_backoff_ignores_attempt_number() -> None:
  policy = CategoryPolicy(category="report-generation", max_concurrency=1, max_attempts=2, backoff="fixed", backoff_ms=1000, max_backoff_ms=60000, keep_completed=1, keep_failed=1)
  assert policy.retry_delay_seconds(1) == policy.retry_delay_seconds(4) == 1.0


def test_policies_follow_settings(settings) -> None:
  policies = policies_from_settings(replace(settings, download_concurrency=80, report_concurrency=5, download_max_attempts=3, report_max_attempts=2))
  assert policies["download"].max_concurrency == 80
  assert policies["download"].backoff == "exponential"
  assert policies["report-generation"].max_concurrency == 5
  assert policies["report-generation"].backoff == "fixed"
  assert policies["report-generation"].max_attempts == 2


def test_estimate_scales_with_priority() -> None:
  assert estimate_processing_seconds(1, 30) == 15
  assert estimate_processing_seconds(2, 30) == 30
  assert estimate_processing_seconds(3, 30) == 45


def _terminal(job_id: str, state: str, finished_at: float, sequence: int) -> JobRecord:
  return JobRecord(job_id=job_id, category="download", job_type="student-attendance", payload={}, priority=3, sequence=sequence, max_attempts=3, created_at=0.0, updated_at=finished_at, state=state, finished_at=finished_at)


def test_prune_terminal_keeps_newest_per_state() -> None:
  repo = InMemoryJobsRepository()
  for index in range(4):
    repo.create_job(_terminal(f"done-{index}", "completed", float(index), index))
  for index in range(3):
    repo.create_job(_terminal(f"fail-{index}", "failed", float(index), 10 + index))
  repo.create_job(JobRecord(job_id="waiting", category="download", job_type="student-attendance", payload={}, priority=3, sequence=99, max_attempts=3, created_at=0.0, updated_at=0.0))

  pruned = repo.prune_terminal("download", keep_completed=2, keep_failed=1)

  assert pruned == ["done-0", "done-1", "fail-0", "fail-1"]
  assert {record.job_id for record in repo.list_jobs()} == {"done-2", "done-3", "fail-2", "waiting"}


def test_create_job_rejects_duplicate_ids() -> None:
  repo = InMemoryJobsRepository()
  record = _terminal("dup", "completed", 1.0, 1)
  repo.create_job(record)
  with pytest.raises(ValueError):
    repo.create_job(record)
