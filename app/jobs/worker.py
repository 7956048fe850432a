"""Priority job queue service with bounded worker pools per category."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from typing import Any

from app.config import Settings
from app.core.exceptions import NotFoundError, TerminalExecutionError, TransientExecutionError
from app.jobs.dispatch import JobProcessorRegistry, process_job
from app.jobs.models import CATEGORY_BY_JOB_TYPE, JOB_CATEGORIES, JobCategory, JobHandle, JobRecord, JobStatusView, priority_for_role
from app.jobs.payloads import parse_job_payload
from app.jobs.progress import JobProgressTracker
from app.jobs.queue import CategoryPolicy, CategoryQueue, policies_from_settings
from app.storage.jobs_repo import InMemoryJobsRepository, JobsRepository
from app.utils.ids import generate_job_id

logger = logging.getLogger(__name__)

MAX_TRACKED_ERRORS = 10
SHUTDOWN_MESSAGE = "Job interrupted by queue shutdown."

# Relative effort per priority value; admins get the fastest estimate.
_ESTIMATE_MULTIPLIERS = {1: 0.5, 2: 1.0, 3: 1.5}


def estimate_processing_seconds(priority: int, base_seconds: int) -> int:
  """Rough processing-time hint returned with a job handle."""
  return round(base_seconds * _ESTIMATE_MULTIPLIERS.get(priority, 1.0))


def _describe_error(exc: BaseException) -> str:
  message = str(exc)
  return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


class JobQueueService:
  """Owns the per-category queues, their worker tasks and the stall monitor.

  Construct one instance per process, call `start()` once the event loop is
  running and `stop()` on shutdown. Jobs submitted before `start()` wait in
  their queue until workers exist.
  """

  def __init__(self, *, registry: JobProcessorRegistry, settings: Settings, jobs_repo: JobsRepository | None = None, policies: dict[JobCategory, CategoryPolicy] | None = None, clock: Callable[[], float] = time.time) -> None:
    self._registry = registry
    self._settings = settings
    self._jobs_repo: JobsRepository = jobs_repo if jobs_repo is not None else InMemoryJobsRepository()
    self._policies = policies or policies_from_settings(settings)
    self._clock = clock
    self._queues: dict[JobCategory, CategoryQueue] = {category: CategoryQueue(category) for category in JOB_CATEGORIES}
    self._sequence = itertools.count(1)
    self._workers: list[asyncio.Task[None]] = []
    self._retry_tasks: set[asyncio.Task[None]] = set()
    self._monitor_task: asyncio.Task[None] | None = None
    self._waiters: dict[str, list[asyncio.Future[JobStatusView]]] = {}
    self._running = False

  @property
  def running(self) -> bool:
    return self._running

  @property
  def policies(self) -> dict[JobCategory, CategoryPolicy]:
    return dict(self._policies)

  async def start(self) -> None:
    """Spawn the worker pools and the stall monitor."""
    if self._running:
      return
    for category, policy in self._policies.items():
      for index in range(policy.max_concurrency):
        self._workers.append(asyncio.create_task(self._worker(category, index), name=f"job-worker-{category}-{index}"))
    self._monitor_task = asyncio.create_task(self._monitor_stalls(), name="job-stall-monitor")
    self._running = True
    logger.info("Job queue started: %s", ", ".join(f"{category}={policy.max_concurrency}" for category, policy in self._policies.items()))

  async def stop(self) -> None:
    """Cancel workers, pending retries and the monitor, then wait for them."""
    if not self._running:
      return
    self._running = False
    tasks: list[asyncio.Task[None]] = [*self._workers, *self._retry_tasks]
    if self._monitor_task is not None:
      tasks.append(self._monitor_task)
    for task in tasks:
      task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    self._workers.clear()
    self._retry_tasks.clear()
    self._monitor_task = None
    for futures in self._waiters.values():
      for future in futures:
        if not future.done():
          future.cancel()
    self._waiters.clear()
    logger.info("Job queue stopped")

  async def submit(self, category: str, job_type: str, payload: dict[str, Any] | None, *, user_id: str | None = None, user_role: str | None = None) -> JobHandle:
    """Validate and enqueue a job; raises JobValidationError for bad payloads."""
    parsed = parse_job_payload(category, job_type, payload)
    policy = self._policies[CATEGORY_BY_JOB_TYPE[parsed.type]]
    priority = priority_for_role(user_role)
    now = self._clock()
    record = JobRecord(
      job_id=generate_job_id(),
      category=policy.category,
      job_type=parsed.type,
      payload=parsed.model_dump(mode="json"),
      priority=priority,
      sequence=next(self._sequence),
      max_attempts=policy.max_attempts,
      created_at=now,
      updated_at=now,
      user_id=user_id,
      user_role=user_role,
    )
    self._jobs_repo.create_job(record)
    queue = self._queues[policy.category]
    await queue.put(record.job_id, priority=record.priority, sequence=record.sequence)
    logger.info("Job %s queued: category=%s type=%s priority=%d role=%s", record.job_id, record.category, record.job_type, priority, user_role or "-")
    return JobHandle(
      job_id=record.job_id,
      category=record.category,
      job_type=record.job_type,
      state=record.state,
      priority=priority,
      queue_position=queue.position(record.job_id),
      estimated_seconds=estimate_processing_seconds(priority, self._settings.job_estimate_base_seconds),
    )

  def get_status(self, job_id: str) -> JobStatusView:
    """Return the current view of a job; unknown or pruned ids raise NotFoundError."""
    record = self._jobs_repo.get_job(job_id)
    if record is None:
      raise NotFoundError(f"Job {job_id} not found.")
    return self._view(record)

  async def wait_for(self, job_id: str, *, timeout: float | None = None) -> JobStatusView:
    """Wait until the job reaches a terminal state and return that final view."""
    record = self._jobs_repo.get_job(job_id)
    if record is None:
      raise NotFoundError(f"Job {job_id} not found.")
    if record.is_terminal:
      return self._view(record)
    future: asyncio.Future[JobStatusView] = asyncio.get_running_loop().create_future()
    waiters = self._waiters.setdefault(job_id, [])
    waiters.append(future)
    try:
      return await asyncio.wait_for(future, timeout)
    finally:
      if future in waiters:
        waiters.remove(future)
      if not waiters and self._waiters.get(job_id) is waiters:
        del self._waiters[job_id]

  def statistics(self) -> dict[str, Any]:
    """Per-category counts plus queued depth per priority value."""
    now = self._clock()
    stats: dict[str, Any] = {}
    for category, policy in self._policies.items():
      records = self._jobs_repo.list_jobs(category=category)
      queued = [record for record in records if record.state == "queued"]
      stats[category] = {
        "queued": sum(1 for record in queued if record.retry_at is None or record.retry_at <= now),
        "delayed": sum(1 for record in queued if record.retry_at is not None and record.retry_at > now),
        "active": sum(1 for record in records if record.state == "active"),
        "completed": sum(1 for record in records if record.state == "completed"),
        "failed": sum(1 for record in records if record.state == "failed"),
        "stalled": sum(1 for record in records if record.state == "active" and record.stalled),
        "max_concurrency": policy.max_concurrency,
        "depth_by_priority": self._queues[category].depth_by_priority(),
      }
    stats["running"] = self._running
    return stats

  def check_stalled(self) -> list[str]:
    """Flag active jobs without progress for longer than the stall threshold."""
    now = self._clock()
    threshold = self._settings.job_stall_threshold_seconds
    flagged: list[str] = []
    for record in self._jobs_repo.list_jobs(state="active"):
      if record.stalled or now - record.updated_at <= threshold:
        continue
      self._jobs_repo.update_job(record.job_id, stalled=True)
      flagged.append(record.job_id)
      logger.warning("Job %s stalled: category=%s type=%s idle=%.1fs progress=%d", record.job_id, record.category, record.job_type, now - record.updated_at, record.progress)
    return flagged

  async def _monitor_stalls(self) -> None:
    interval = self._settings.job_stall_check_interval_seconds
    while True:
      await asyncio.sleep(interval)
      self.check_stalled()

  async def _worker(self, category: JobCategory, index: int) -> None:
    queue = self._queues[category]
    while True:
      job_id = await queue.get()
      record = self._jobs_repo.get_job(job_id)
      if record is None or record.state != "queued":
        logger.debug("Worker %s-%d skipped job %s", category, index, job_id)
        continue
      await self._run_attempt(record)

  async def _run_attempt(self, record: JobRecord) -> None:
    policy = self._policies[record.category]
    now = self._clock()
    attempt = record.attempts + 1
    job = self._jobs_repo.update_job(record.job_id, state="active", attempts=attempt, progress=0, stalled=False, retry_at=None, started_at=record.started_at or now, updated_at=now)
    if job is None:
      return
    logger.info("Job %s started: attempt %d/%d", job.job_id, attempt, policy.max_attempts)
    tracker = JobProgressTracker(job_id=job.job_id, jobs_repo=self._jobs_repo, attempt=attempt, clock=self._clock)
    try:
      result = await process_job(job, self._registry, tracker)
    except asyncio.CancelledError:
      self._finish(job.job_id, state="failed", error=SHUTDOWN_MESSAGE)
      raise
    except Exception as exc:  # noqa: BLE001
      logger.error("Job %s attempt %d/%d failed", job.job_id, attempt, policy.max_attempts, exc_info=True)
      self._handle_failure(job, exc, policy)
    else:
      self._finish(job.job_id, state="completed", result=result, progress=100)
      logger.info("Job %s completed in %.2fs", job.job_id, self._clock() - now)

  def _handle_failure(self, job: JobRecord, exc: Exception, policy: CategoryPolicy) -> None:
    message = _describe_error(exc)
    errors = [*job.errors, message][-MAX_TRACKED_ERRORS:]
    if job.attempts >= policy.max_attempts:
      terminal = TerminalExecutionError(f"Attempts exhausted ({job.attempts}/{policy.max_attempts}); last error: {message}")
      self._finish(job.job_id, state="failed", error=str(terminal), errors=errors)
      logger.warning("Job %s failed permanently: %s", job.job_id, message)
      return

    delay = policy.retry_delay_seconds(job.attempts)
    retryable = exc if isinstance(exc, TransientExecutionError) else TransientExecutionError(f"Attempt {job.attempts}/{policy.max_attempts} failed, retrying in {delay:.2f}s: {message}")
    now = self._clock()
    self._jobs_repo.update_job(job.job_id, state="queued", error=str(retryable), errors=errors, retry_at=now + delay, updated_at=now)
    logger.info("Job %s retry scheduled in %.2fs (attempt %d/%d)", job.job_id, delay, job.attempts, policy.max_attempts)
    task = asyncio.create_task(self._requeue_later(job.job_id, delay), name=f"job-retry-{job.job_id}")
    self._retry_tasks.add(task)
    task.add_done_callback(self._retry_tasks.discard)

  async def _requeue_later(self, job_id: str, delay: float) -> None:
    await asyncio.sleep(delay)
    record = self._jobs_repo.get_job(job_id)
    if record is None or record.state != "queued":
      return
    self._jobs_repo.update_job(job_id, retry_at=None)
    # Retries keep their original arrival sequence.
    await self._queues[record.category].put(job_id, priority=record.priority, sequence=record.sequence)

  def _finish(self, job_id: str, *, state: str, result: dict[str, Any] | None = None, error: str | None = None, errors: list[str] | None = None, progress: int | None = None) -> None:
    now = self._clock()
    changes: dict[str, Any] = {"state": state, "finished_at": now, "updated_at": now, "stalled": False}
    if result is not None:
      changes["result"] = result
    if error is not None:
      changes["error"] = error
    if errors is not None:
      changes["errors"] = errors
    if progress is not None:
      changes["progress"] = progress
    record = self._jobs_repo.update_job(job_id, **changes)
    if record is None:
      return
    self._notify_waiters(record)
    policy = self._policies[record.category]
    self._jobs_repo.prune_terminal(record.category, keep_completed=policy.keep_completed, keep_failed=policy.keep_failed)

  def _notify_waiters(self, record: JobRecord) -> None:
    futures = self._waiters.pop(record.job_id, [])
    if not futures:
      return
    view = self._view(record)
    for future in futures:
      if not future.done():
        future.set_result(view)

  def _view(self, record: JobRecord) -> JobStatusView:
    position = self._queues[record.category].position(record.job_id) if record.state == "queued" else None
    return JobStatusView(
      job_id=record.job_id,
      category=record.category,
      job_type=record.job_type,
      state=record.state,
      progress=record.progress,
      attempts=record.attempts,
      max_attempts=record.max_attempts,
      priority=record.priority,
      stalled=record.stalled,
      created_at=record.created_at,
      started_at=record.started_at,
      finished_at=record.finished_at,
      result=record.result,
      error=record.error,
      queue_position=position,
      retry_at=record.retry_at,
    )

