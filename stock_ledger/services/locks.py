"""
Module: stock_ledger.services.locks
Responsibility: Per-(product, location) mutual exclusion for stock mutations
    and a retry helper for callers that want to ride out contention.
Architecture position: Ledger > Services.  Used by StockMutationService,
    StockLevelStore and InventoryCountEngine; knows nothing about storage.

Invariants enforced:
    - Keys are always acquired in sorted (product_id, location_id) order, so
      two multi-key holders can never wait on each other in a cycle.
    - Locks are reentrant: a thread that already holds a key (count
      finalisation holding every line key) can call into single-key
      mutations without deadlocking on itself.
    - Waiting is bounded by ``timeout_seconds``; on expiry every key
      acquired so far is released and ContendedError is raised.
    - A key stays in the registry only while some thread holds or waits
      on it.

Failure modes:
    - ContendedError when a key cannot be acquired in time.
"""

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from stock_ledger.domain.values import StockKey
from stock_ledger.exceptions import ConcurrencyError, ContendedError
from stock_ledger.logging_config import get_logger

logger = get_logger("services.locks")

T = TypeVar("T")


class _KeyLock:
    """A key's lock plus the number of threads holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class KeyedLockManager:
    """
    Registry of reentrant locks, one per stock key.

        with locks.hold(("P1", "W1"), ("P1", "W2")):
            ...  # both keys held, in sorted order
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[StockKey, _KeyLock] = {}

    @property
    def active_keys(self) -> int:
        """Keys currently held or waited on."""
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: StockKey) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: StockKey, entry: _KeyLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: StockKey, timeout: float | None = None) -> Iterator[None]:
        ordered = sorted(set(keys))
        timeout = self.timeout_seconds if timeout is None else timeout
        deadline = time.monotonic() + timeout
        acquired: list[tuple[StockKey, _KeyLock]] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(key, entry)
                    logger.warning(
                        "lock_contended",
                        extra={
                            "keys": [f"{p}@{loc}" for p, loc in ordered],
                            "blocked_on": f"{key[0]}@{key[1]}",
                            "timeout_seconds": timeout,
                        },
                    )
                    raise ContendedError(ordered, timeout)
                acquired.append((key, entry))
            yield
        finally:
            for key, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(key, entry)


def retry_on_contention(
    fn: Callable[[], T],
    attempts: int = 3,
    backoff_seconds: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it stops failing with a concurrency error.

    Retries ContendedError and OptimisticLockError with exponential backoff
    (``backoff_seconds``, doubled per attempt).  The last error is re-raised
    once ``attempts`` calls have failed.

    Usage:
        retry_on_contention(lambda: mutations.apply_sale("P1", "W1", 1))
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ConcurrencyError as exc:
            if attempt == attempts:
                logger.warning(
                    "contention_retries_exhausted",
                    extra={"attempts": attempts, "error_code": exc.code},
                )
                raise
            delay = backoff_seconds * (2 ** (attempt - 1))
            logger.info(
                "contention_retry",
                extra={"attempt": attempt, "delay_seconds": delay, "error_code": exc.code},
            )
            sleep(delay)
    raise AssertionError("unreachable")
