"""
Module: rental_kernel.db.locks
Responsibility: In-process keyed locks that serialize work per property,
    tenant, gateway transaction and maintenance request.
Architecture position: Kernel > DB.  Used by TransactionRunner; MUST NOT
    import from services/ or outer layers.

Invariants enforced:
    - Keys are acquired in sorted order, so two callers asking for the same
      pair of keys can never deadlock each other.
    - Acquisition is bounded: a caller waits at most ``timeout_seconds`` and
      then gets LockTimeoutError instead of blocking forever.
    - Independent keys never contend: two tenants record payments in parallel.
    - The registry holds a lock only while some thread holds or waits for its
      key; idle keys are evicted, so memory is bounded by concurrent work.

Failure modes:
    - LockTimeoutError when a key stays held past the timeout.  The error is
      transient; TransactionRunner retries the whole operation.

Audit relevance:
    These locks complement, and never replace, database row locks
    (SELECT ... FOR UPDATE) and unique constraints.  A second process sharing
    the database is still serialized by the database.
"""

import threading
from contextlib import contextmanager
from typing import Iterator

from rental_kernel.exceptions import LockTimeoutError
from rental_kernel.logging_config import get_logger

logger = get_logger("db.locks")


def property_key(property_id) -> str:
    return f"property:{property_id}"


def tenant_key(tenant_id) -> str:
    return f"tenant:{tenant_id}"


def gateway_key(transaction_id) -> str:
    return f"gateway:{transaction_id}"


def maintenance_key(request_id) -> str:
    return f"maintenance:{request_id}"


class KeyedLockRegistry:
    """
    Registry of named re-entrant locks.

    Contract:
        ``hold(*keys)`` is a context manager that acquires every key in sorted
        order and releases them in reverse order on exit.  Re-entrant per
        thread, so a facade method holding ``tenant:<id>`` may call another
        that asks for the same key.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: dict[str, list] = {}

    def tracked_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str, timeout: float | None = None) -> Iterator[None]:
        wait = self.timeout_seconds if timeout is None else timeout
        acquired: list[tuple[str, threading.RLock]] = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                if not lock.acquire(timeout=wait):
                    self._checkin(key)
                    logger.warning(
                        "lock_timeout",
                        extra={"lock_key": key, "timeout_seconds": wait},
                    )
                    raise LockTimeoutError(key=key, timeout_seconds=wait)
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)
