"""
Per-Loan Locking

Every ledger operation reads the full history of one loan and writes rows
derived from it, so operations on the same loan run one at a time. Different
loans never wait on each other.
"""

from contextlib import contextmanager
from typing import Dict
import threading

from .errors import LockTimeoutError


class LoanLockManager:
    """Re-entrant lock per loan id"""

    def __init__(self, timeout_seconds: float = 30.0):
        self.timeout_seconds = timeout_seconds
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, loan_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(loan_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[loan_id] = lock
            return lock

    @contextmanager
    def hold(self, loan_id: str):
        """Hold the loan's lock for the duration of the block"""
        lock = self._lock_for(loan_id)
        if not lock.acquire(timeout=self.timeout_seconds):
            raise LockTimeoutError(
                f"Loan {loan_id} is busy; lock not acquired within {self.timeout_seconds}s"
            )
        try:
            yield
        finally:
            lock.release()
