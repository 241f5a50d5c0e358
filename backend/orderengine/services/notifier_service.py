# Overview: Completion notifier; outbox rows plus fire-and-forget in-process dispatch.

"""
Change Notifier

WHY: Alerting (sounds, banners, system notifications) must hear about every
order that reaches "completed" without the commit path ever waiting on it.

DESIGN:
- publish() writes an OrderEvent outbox row and enqueues the event, then returns.
- A daemon dispatcher thread hands queued events to in-process subscribers.
- No acknowledgement, no retry: a subscriber that raises is logged and skipped.
- Out-of-process consumers poll the outbox (GET /api/events?after_id=N), which
  gives them at-least-once delivery; they must be idempotent on event id.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class OrderCompletedEvent:
    order_id: int
    total_cents: int
    event_id: int | None = None


class ChangeNotifier:
    def __init__(self, app=None):
        self._queue: queue.Queue = queue.Queue()
        self._subscribers: list[Callable[[OrderCompletedEvent], None]] = []
        self._subscribers_lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._worker_lock = threading.Lock()
        self._logger = None
        self.dispatch_enabled = True
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self._logger = app.logger
        self.dispatch_enabled = bool(app.config.get("NOTIFIER_DISPATCH_ENABLED", True))
        app.extensions["change_notifier"] = self

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[OrderCompletedEvent], None]) -> None:
        with self._subscribers_lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[OrderCompletedEvent], None]) -> None:
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, order_id: int, total_cents: int) -> OrderCompletedEvent:
        """
        Publish an order-completed event. Never raises and never blocks on consumers.

        Must be called inside an app context (the outbox row uses the db session).
        """
        event_id = self._write_outbox(order_id, total_cents)
        event = OrderCompletedEvent(order_id=order_id, total_cents=total_cents, event_id=event_id)

        if self.dispatch_enabled:
            self._queue.put(event)
            self._ensure_worker()
        return event

    def _write_outbox(self, order_id: int, total_cents: int) -> int | None:
        from sqlalchemy.exc import SQLAlchemyError

        from ..extensions import db
        from ..models import OrderEvent

        try:
            row = OrderEvent(order_id=order_id, total_cents=total_cents)
            db.session.add(row)
            db.session.commit()
            return row.id
        except SQLAlchemyError:
            db.session.rollback()
            self._log_exception("Failed to write completion event for order %s", order_id)
            return None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._run,
                name="order-change-notifier",
                daemon=True,
            )
            self._worker.start()

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            try:
                with self._subscribers_lock:
                    subscribers = list(self._subscribers)
                for callback in subscribers:
                    try:
                        callback(event)
                    except Exception:
                        self._log_exception("Notifier subscriber failed for order %s", event.order_id)
            finally:
                self._queue.task_done()

    @property
    def pending(self) -> int:
        return self._queue.unfinished_tasks

    def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event was handed to subscribers. Returns False on timeout."""
        deadline = time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def _log_exception(self, message: str, *args) -> None:
        if self._logger is not None:
            self._logger.exception(message, *args)


def list_events(after_id: int = 0, limit: int = 100) -> list:
    """Outbox rows with id > after_id, oldest first. Pollers pass the last id they saw."""
    from ..extensions import db
    from ..models import OrderEvent

    limit = max(1, min(limit, 500))
    return (
        db.session.query(OrderEvent)
        .filter(OrderEvent.id > after_id)
        .order_by(OrderEvent.id)
        .limit(limit)
        .all()
    )
