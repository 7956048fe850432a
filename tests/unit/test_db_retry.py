from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.utils.db_retry import classify_db_failure, execute_with_retry


class _PgError(Exception):
  def __init__(self, pgcode: str) -> None:
    super().__init__(pgcode)
    self.pgcode = pgcode


def _mysql(errno: int, message: str = "server said no") -> OperationalError:
  return OperationalError("INSERT ...", {}, Exception(errno, message))


@pytest.mark.parametrize(
  ("exc", "retryable", "category"),
  [
    (OperationalError("SELECT 1", {}, _PgError("40001")), True, "serialization_conflict"),
    (OperationalError("SELECT 1", {}, _PgError("40P01")), True, "deadlock"),
    (_mysql(1213), True, "deadlock"),
    (_mysql(1205), True, "lock_timeout"),
    (_mysql(2006), True, "connectivity_error"),
    (IntegrityError("INSERT ...", {}, Exception(1062, "Duplicate entry")), False, "integrity_error"),
    (_mysql(1146), False, "schema_error"),
    (OperationalError("INSERT ...", {}, Exception("database is locked")), True, "connectivity_error"),
    (OperationalError("INSERT ...", {}, Exception("disk I/O error")), False, "operational_error_unknown"),
    (ValueError("bad"), False, "programming_error"),
  ],
)
def test_classification(exc: Exception, retryable: bool, category: str) -> None:
  classification = classify_db_failure(exc)
  assert classification.retryable is retryable
  assert classification.category == category


def test_mysql_errno_is_reported() -> None:
  assert classify_db_failure(_mysql(1213)).errno == 1213


@pytest.mark.anyio
async def test_transient_failures_are_retried() -> None:
  calls = {"count": 0}

  async def _flaky() -> int:
    calls["count"] += 1
    if calls["count"] < 3:
      raise _mysql(1213, "Deadlock found")
    return 7

  assert await execute_with_retry(operation_name="archive:test", func=_flaky, initial_backoff_ms=1, max_backoff_ms=1, jitter=False) == 7
  assert calls["count"] == 3


@pytest.mark.anyio
async def test_permanent_failures_raise_immediately() -> None:
  calls = {"count": 0}

  async def _broken() -> int:
    calls["count"] += 1
    raise _mysql(1146, "Table doesn't exist")

  with pytest.raises(OperationalError):
    await execute_with_retry(operation_name="archive:test", func=_broken, initial_backoff_ms=1, jitter=False)
  assert calls["count"] == 1


@pytest.mark.anyio
async def test_retries_stop_at_max_attempts() -> None:
  calls = {"count": 0}

  async def _always_locked() -> int:
    calls["count"] += 1
    raise _mysql(1205, "Lock wait timeout")

  with pytest.raises(OperationalError):
    await execute_with_retry(operation_name="prune:test", func=_always_locked, max_attempts=2, initial_backoff_ms=1, max_backoff_ms=1, jitter=False)
  assert calls["count"] == 2
