"""
Module: rental_kernel.db.transaction
Responsibility: Run one unit of work in its own database transaction, holding
    the keyed locks it needs, and retry it with bounded exponential backoff
    when the store fails transiently.
Architecture position: Kernel > DB.  Used by the PropertyManagementService
    facade.  MUST NOT import from modules or outer layers.

Invariants enforced:
    - All-or-nothing: every attempt gets a fresh Session; any exception rolls
      the attempt back completely before the next one starts.
    - Bounded retry: at most ``max_attempts`` attempts, delays of
      ``base_delay * 2**(n-1)`` capped at ``max_delay``.
    - Only transient failures are retried.  Validation, conflict, not-found
      and workflow errors surface on the first attempt.

Failure modes:
    - StoreUnavailableError (chained to the last transient error) once the
      retry budget is exhausted.

Audit relevance:
    Each attempt logs ``transaction_retry`` with the attempt number and the
    error, so lock contention is visible in the structured log.
"""

import time
from typing import Callable, Sequence, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from rental_kernel.db.locks import KeyedLockRegistry
from rental_kernel.exceptions import LockTimeoutError, StoreUnavailableError
from rental_kernel.logging_config import LogContext, get_logger

logger = get_logger("db.transaction")

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """True when ``exc`` is worth retrying in a fresh transaction."""
    if isinstance(exc, (LockTimeoutError, OperationalError, InterfaceError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False


class TransactionRunner:
    """
    Executes callables inside retried, lock-guarded transactions.

    Contract:
        ``run(operation, fn, lock_keys=...)`` calls ``fn(session)`` and
        commits.  The return value of the last successful attempt is
        returned.  ``fn`` must not commit or close the session.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        locks: KeyedLockRegistry | None = None,
        max_attempts: int = 3,
        base_delay_seconds: float = 0.05,
        max_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self.locks = locks or KeyedLockRegistry()
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self._sleep = sleep

    def _delay_for(self, attempt: int) -> float:
        return min(self.max_delay_seconds, self.base_delay_seconds * (2 ** (attempt - 1)))

    def _attempt(self, fn: Callable[[Session], T], lock_keys: Sequence[str]) -> T:
        with self.locks.hold(*lock_keys):
            session = self._session_factory()
            try:
                result = fn(session)
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def run(
        self,
        operation: str,
        fn: Callable[[Session], T],
        lock_keys: Sequence[str] = (),
    ) -> T:
        last_error: BaseException | None = None
        with LogContext.bind(operation=operation):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return self._attempt(fn, lock_keys)
                except Exception as exc:
                    if not is_transient(exc):
                        raise
                    last_error = exc
                    if attempt == self.max_attempts:
                        break
                    delay = self._delay_for(attempt)
                    logger.warning(
                        "transaction_retry",
                        extra={
                            "attempt": attempt,
                            "max_attempts": self.max_attempts,
                            "delay_seconds": delay,
                            "error_type": type(exc).__name__,
                            "error": str(exc),
                        },
                    )
                    self._sleep(delay)

            logger.error(
                "transaction_retries_exhausted",
                extra={
                    "attempts": self.max_attempts,
                    "error_type": type(last_error).__name__,
                },
            )
            raise StoreUnavailableError(
                operation=operation,
                attempts=self.max_attempts,
                last_error=str(last_error),
            ) from last_error
