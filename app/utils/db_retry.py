"""Database retry logic with retryable vs non-retryable error classification."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# MySQL/MariaDB server error numbers.
_MYSQL_DEADLOCK = 1213
_MYSQL_LOCK_WAIT_TIMEOUT = 1205
_MYSQL_CONNECTION_ERRNOS = frozenset({2003, 2006, 2013})
_MYSQL_INTEGRITY_ERRNOS = frozenset({1048, 1062, 1451, 1452})
_MYSQL_SCHEMA_ERRNOS = frozenset({1054, 1064, 1146})

_TRANSIENT_MESSAGE_PATTERNS = ("connection", "timeout", "reset", "network", "broken pipe", "lost connection", "database is locked")


class DBFailureClassification:
  """Classification result for a database failure."""

  def __init__(self, *, retryable: bool, reason: str, sqlstate: str | None, category: str, errno: int | None = None) -> None:
    self.retryable = retryable
    self.reason = reason
    self.sqlstate = sqlstate
    self.category = category
    self.errno = errno


def _extract_sqlstate(exc: Exception) -> str | None:
  """Extract SQLSTATE from the driver exception wrapped by SQLAlchemy."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    for attribute in ("pgcode", "sqlstate"):
      value = getattr(exc.orig, attribute, None)
      if value:
        return str(value)
  return None


def _extract_mysql_errno(exc: Exception) -> int | None:
  """MySQL drivers put the server errno first in the exception args."""
  if isinstance(exc, DBAPIError) and exc.orig is not None:
    args = getattr(exc.orig, "args", ())
    if args and isinstance(args[0], int):
      return args[0]
  return None


def classify_db_failure(exc: Exception) -> DBFailureClassification:
  """
  Classify database failure as retryable or non-retryable.

  Signals, in order: Postgres SQLSTATE, MySQL errno, then exception type and
  message patterns.

  Retryable (transient):
    - 40001 / 40P01: serialization failure, deadlock
    - MySQL 1213 deadlock, 1205 lock wait timeout
    - Connection drops/resets, sqlite "database is locked"

  Non-retryable (permanent):
    - Integrity violations
    - Schema/SQL errors
    - Permission errors
    - Programming errors
  """
  sqlstate = _extract_sqlstate(exc)
  errno = _extract_mysql_errno(exc)

  if sqlstate == "40001":
    return DBFailureClassification(retryable=True, reason="Serialization failure - transaction conflict", sqlstate=sqlstate, category="serialization_conflict")

  if sqlstate == "40P01" or errno == _MYSQL_DEADLOCK:
    return DBFailureClassification(retryable=True, reason="Deadlock detected", sqlstate=sqlstate, category="deadlock", errno=errno)

  if errno == _MYSQL_LOCK_WAIT_TIMEOUT:
    return DBFailureClassification(retryable=True, reason="Lock wait timeout exceeded", sqlstate=sqlstate, category="lock_timeout", errno=errno)

  if sqlstate == "55P03":
    return DBFailureClassification(retryable=False, reason="Lock not available (NOWAIT)", sqlstate=sqlstate, category="lock_timeout")

  if sqlstate == "57014":
    return DBFailureClassification(retryable=False, reason="Query canceled (timeout)", sqlstate=sqlstate, category="query_timeout")

  if errno in _MYSQL_CONNECTION_ERRNOS:
    return DBFailureClassification(retryable=True, reason="MySQL server connection lost", sqlstate=sqlstate, category="connectivity_error", errno=errno)

  if (sqlstate and sqlstate.startswith("23")) or errno in _MYSQL_INTEGRITY_ERRNOS:
    return DBFailureClassification(retryable=False, reason="Integrity constraint violation", sqlstate=sqlstate, category="integrity_error", errno=errno)

  if (sqlstate and sqlstate.startswith("42")) or errno in _MYSQL_SCHEMA_ERRNOS:
    return DBFailureClassification(retryable=False, reason="Schema/SQL error (undefined table/column, syntax error)", sqlstate=sqlstate, category="schema_error", errno=errno)

  if sqlstate and sqlstate.startswith("28"):
    return DBFailureClassification(retryable=False, reason="Authentication/permission error", sqlstate=sqlstate, category="permission_error")

  if isinstance(exc, IntegrityError):
    return DBFailureClassification(retryable=False, reason="Integrity constraint violation (detected by exception type)", sqlstate=sqlstate, category="integrity_error", errno=errno)

  if isinstance(exc, AttributeError | TypeError | ValueError | KeyError | IndexError):
    return DBFailureClassification(retryable=False, reason=f"Programming error: {type(exc).__name__}", sqlstate=sqlstate, category="programming_error")

  if isinstance(exc, OperationalError):
    error_msg = str(exc).lower()
    if any(pattern in error_msg for pattern in _TRANSIENT_MESSAGE_PATTERNS):
      return DBFailureClassification(retryable=True, reason="Transient connection/lock error", sqlstate=sqlstate, category="connectivity_error", errno=errno)
    return DBFailureClassification(retryable=False, reason="Operational error (unknown cause)", sqlstate=sqlstate, category="operational_error_unknown", errno=errno)

  return DBFailureClassification(retryable=False, reason=f"Unknown error type: {type(exc).__name__}", sqlstate=sqlstate, category="unknown_error", errno=errno)


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 3, initial_backoff_ms: int = 100, max_backoff_ms: int = 2000, jitter: bool = True) -> T:
  """
  Execute a database operation, retrying transient failures.

  Args:
    operation_name: Human-readable name for logging (e.g., "archive:absensi_siswa")
    func: Async callable to execute; must be safe to run again after a rollback
    max_attempts: Maximum number of attempts including the first
    initial_backoff_ms: Starting backoff delay in milliseconds
    max_backoff_ms: Maximum backoff delay in milliseconds
    jitter: Add +/-25% randomness to each delay

  Raises:
    The original exception if non-retryable or attempts are exhausted
  """
  attempt = 0
  while True:
    attempt += 1
    try:
      result = await func()
    except Exception as exc:
      classification = classify_db_failure(exc)
      logger.warning(
        "DB operation failed: operation=%s, attempt=%d/%d, category=%s, sqlstate=%s, errno=%s, retryable=%s, reason=%s",
        operation_name,
        attempt,
        max_attempts,
        classification.category,
        classification.sqlstate or "none",
        classification.errno if classification.errno is not None else "none",
        classification.retryable,
        classification.reason,
        exc_info=(not classification.retryable),
      )
      if not classification.retryable:
        raise
      if attempt >= max_attempts:
        logger.error("DB operation failed after %d attempts: operation=%s, category=%s - giving up", max_attempts, operation_name, classification.category)
        raise

      backoff_ms = min(initial_backoff_ms * (2 ** (attempt - 1)), max_backoff_ms)
      if jitter:
        jitter_range = backoff_ms * 0.25
        backoff_ms += random.uniform(-jitter_range, jitter_range)
      logger.info("Retrying DB operation after backoff: operation=%s, attempt=%d/%d, backoff_ms=%.1f", operation_name, attempt, max_attempts, backoff_ms)
      await asyncio.sleep(backoff_ms / 1000.0)
      continue

    if attempt > 1:
      logger.info("DB operation succeeded after retry: operation=%s, attempt=%d/%d", operation_name, attempt, max_attempts)
    return result
