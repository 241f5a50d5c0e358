# Overview: Service-layer helpers for concurrency; row locks, retries and the per-terminal single-flight guard.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError


class DuplicateSubmissionError(ConflictError):
    """Raised when a terminal already has a commit in flight or is cooling down."""


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks, busy timeouts) and
    StaleDataError (optimistic locking conflicts). The last failure is
    re-raised so callers can surface it as retryable.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


class SingleFlightGuard:
    """
    At most one in-flight operation per owner, rejected rather than queued.

    Scoped to one terminal inside one process: it absorbs double taps and UI
    re-render races, it is NOT a distributed lock. Cross-terminal races on
    stock are settled by the stock ledger's conditional update.

    After each release the guard stays closed for cooldown_seconds.
    """

    def __init__(self, cooldown_seconds: float = 0.0):
        self.cooldown_seconds = cooldown_seconds
        self._lock = threading.Lock()
        self._cooldown_until = 0.0

    @property
    def busy(self) -> bool:
        return self._lock.locked() or time.monotonic() < self._cooldown_until

    @contextmanager
    def hold(self):
        if not self._lock.acquire(blocking=False):
            raise DuplicateSubmissionError("A commit is already in progress for this terminal")

        if time.monotonic() < self._cooldown_until:
            self._lock.release()
            raise DuplicateSubmissionError("Terminal is cooling down after the previous commit")

        try:
            yield self
        finally:
            self._cooldown_until = time.monotonic() + self.cooldown_seconds
            self._lock.release()
