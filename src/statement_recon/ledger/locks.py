"""Per-transaction mutual exclusion for state-changing operations."""

from contextlib import contextmanager
from threading import Lock
from typing import Iterator
import logging

from ..utils.exceptions import ConflictError

logger = logging.getLogger(__name__)


class TransactionLocks:
    """
    Keyed lock registry.

    ``hold`` takes the locks of every given transaction in sorted id order,
    so two callers locking the same pair cannot deadlock. Acquisition gives
    up after ``timeout`` seconds with a ``ConflictError``.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: dict[str, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, transaction_id: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(transaction_id)
            if lock is None:
                lock = Lock()
                self._locks[transaction_id] = lock
            return lock

    @contextmanager
    def hold(self, *transaction_ids: str) -> Iterator[None]:
        acquired: list[Lock] = []
        try:
            for transaction_id in sorted(set(transaction_ids)):
                lock = self._lock_for(transaction_id)
                if not lock.acquire(timeout=self.timeout):
                    logger.warning(f"Timed out waiting for lock on {transaction_id}")
                    raise ConflictError(
                        f"Transaction {transaction_id} is busy; re-read its state and retry"
                    )
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
