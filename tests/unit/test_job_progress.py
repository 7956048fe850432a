from __future__ import annotations

from app.jobs.models import JobRecord
from app.jobs.progress import JobProgressTracker
from app.storage.jobs_repo import InMemoryJobsRepository


def _record(job_id: str = "job-1") -> JobRecord:
  return JobRecord(job_id=job_id, category="download", job_type="student-attendance", payload={}, priority=3, sequence=1, max_attempts=3, created_at=0.0, updated_at=0.0, state="active")


def test_progress_is_monotonic_within_an_attempt() -> None:
  repo = InMemoryJobsRepository()
  repo.create_job(_record())
  tracker = JobProgressTracker(job_id="job-1", jobs_repo=repo, attempt=1, clock=lambda: 5.0)

  tracker(30)
  tracker(10)
  assert tracker.percent == 30
  assert repo.get_job("job-1").progress == 30

  tracker(250)
  assert repo.get_job("job-1").progress == 100


def test_lower_progress_still_refreshes_activity_and_clears_stall() -> None:
  repo = InMemoryJobsRepository()
  repo.create_job(_record())
  repo.update_job("job-1", stalled=True)
  tracker = JobProgressTracker(job_id="job-1", jobs_repo=repo, attempt=2, clock=lambda: 42.0)

  tracker(-5)

  record = repo.get_job("job-1")
  assert record.progress == 0
  assert record.stalled is False
  assert record.updated_at == 42.0
  assert tracker.attempt == 2


def test_progress_for_pruned_job_is_ignored() -> None:
  repo = InMemoryJobsRepository()
  tracker = JobProgressTracker(job_id="gone", jobs_repo=repo, attempt=1)
  tracker(50)
  assert tracker.percent == 50
  assert len(repo) == 0
