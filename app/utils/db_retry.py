"""Retry of short transactional units on transient Postgres failures.

Admission runs its idempotency lookup, quota read and inserts while holding
the tenant row lock. Two admissions that touch the same rows in a different
order can deadlock, and a serializable snapshot can be rejected; Postgres
rolls the whole transaction back in both cases, so the unit is safe to run
again. A dropped connection is retried too. Everything else (integrity
violations, schema errors, application exceptions) is raised on the first
attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Final, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATEs for which Postgres has already rolled the transaction back.
RETRYABLE_SQLSTATES: Final[dict[str, str]] = {"40001": "serialization_failure", "40P01": "deadlock_detected"}
# Class 08: connection exception.
CONNECTION_SQLSTATE_CLASS: Final[str] = "08"


@dataclass(frozen=True)
class RetryDecision:
  retryable: bool
  category: str
  sqlstate: str | None = None


def sqlstate_of(exc: BaseException) -> str | None:
  """SQLSTATE carried by the driver error wrapped in a SQLAlchemy exception."""
  orig = getattr(exc, "orig", None)
  for attr in ("sqlstate", "pgcode"):
    value = getattr(orig, attr, None)
    if value:
      return str(value)
  return None


def classify_db_failure(exc: BaseException) -> RetryDecision:
  sqlstate = sqlstate_of(exc)
  if sqlstate in RETRYABLE_SQLSTATES:
    return RetryDecision(retryable=True, category=RETRYABLE_SQLSTATES[sqlstate], sqlstate=sqlstate)
  if sqlstate and sqlstate.startswith(CONNECTION_SQLSTATE_CLASS):
    return RetryDecision(retryable=True, category="connection_exception", sqlstate=sqlstate)
  if isinstance(exc, DBAPIError) and exc.connection_invalidated:
    return RetryDecision(retryable=True, category="connection_lost", sqlstate=sqlstate)
  if isinstance(exc, (InterfaceError, ConnectionError)):
    return RetryDecision(retryable=True, category="connection_lost", sqlstate=sqlstate)
  return RetryDecision(retryable=False, category=type(exc).__name__, sqlstate=sqlstate)


def backoff_delay_ms(attempt: int, *, initial_ms: int, max_ms: int, jitter: bool) -> float:
  """Exponential delay after ``attempt`` failed, capped and optionally spread by +/-25%."""
  delay = float(min(initial_ms * (2 ** (attempt - 1)), max_ms))
  if jitter and delay > 0:
    delay += random.uniform(-delay * 0.25, delay * 0.25)
  return delay


async def execute_with_retry(*, operation_name: str, func: Callable[[], Awaitable[T]], max_attempts: int = 3, initial_backoff_ms: int = 50, max_backoff_ms: int = 1000, jitter: bool = True) -> T:
  """Run ``func`` until it succeeds, retrying transient database failures.

  ``func`` must open and commit its own transaction so that each attempt
  starts from a clean rollback. The last failure is re-raised once
  ``max_attempts`` is reached.
  """
  attempt = 1
  while True:
    try:
      result = await func()
    except Exception as exc:
      decision = classify_db_failure(exc)
      if not decision.retryable:
        raise
      if attempt >= max_attempts:
        logger.error("%s failed after %d attempts category=%s sqlstate=%s", operation_name, attempt, decision.category, decision.sqlstate or "none")
        raise
      delay_ms = backoff_delay_ms(attempt, initial_ms=initial_backoff_ms, max_ms=max_backoff_ms, jitter=jitter)
      logger.warning("%s attempt %d/%d hit %s sqlstate=%s, retrying in %.0fms", operation_name, attempt, max_attempts, decision.category, decision.sqlstate or "none", delay_ms)
      await asyncio.sleep(delay_ms / 1000.0)
      attempt += 1
      continue
    if attempt > 1:
      logger.info("%s succeeded on attempt %d", operation_name, attempt)
    return result
