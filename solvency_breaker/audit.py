"""
Solvency Breaker - Audit Journal.

============================================================
PURPOSE
============================================================
In-memory record of every breach, restriction, degraded-mode
and window lifecycle event.

Recording is cheap and happens inside the locked decision
path. Delivery to subscribers (database, alerting owned by
the ledger) happens AFTER the decision, outside any lock,
via dispatch_pending().

ALL BREACH AND RESTRICTION EVENTS MUST BE RECORDED.

============================================================
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

from .types import AuditEvent, AuditEventType, AuditPersistenceError


logger = logging.getLogger(__name__)


AuditSubscriber = Callable[[AuditEvent], None]


class AuditJournal:
    """
    Bounded journal with deferred subscriber delivery.
    """

    def __init__(self, max_events: int = 10_000):
        self._events: Deque[AuditEvent] = deque(maxlen=max_events)
        self._pending: List[AuditEvent] = []
        self._subscribers: List[AuditSubscriber] = []
        self._lock = threading.Lock()
        self._dispatch_lock = threading.RLock()

    def subscribe(self, subscriber: AuditSubscriber) -> None:
        """Register a subscriber for dispatched events."""
        self._subscribers.append(subscriber)

    def record(self, event: AuditEvent) -> None:
        """Append an event. Never performs I/O."""
        with self._lock:
            self._events.append(event)
            self._pending.append(event)

    def dispatch_pending(self) -> int:
        """
        Deliver queued events to subscribers, in recording order.

        One dispatch runs at a time. A subscriber error re-queues
        the failed event and everything behind it, then surfaces
        as AuditPersistenceError whatever its original type.
        Delivery is at-least-once: earlier subscribers may see the
        failed event again on the next dispatch.

        Returns:
            Number of events delivered

        Raises:
            AuditPersistenceError: A subscriber failed
        """
        with self._dispatch_lock:
            with self._lock:
                batch, self._pending = self._pending, []

            for index, event in enumerate(batch):
                for subscriber in self._subscribers:
                    try:
                        subscriber(event)
                    except Exception as e:
                        logger.error(f"Audit subscriber failed on {event.event_type.value}: {e!r}")
                        with self._lock:
                            self._pending = batch[index:] + self._pending
                        if isinstance(e, AuditPersistenceError):
                            raise
                        raise AuditPersistenceError(
                            f"Audit subscriber failed on {event.event_type.value}: {e!r}"
                        ) from e
            return len(batch)

    def events(
        self,
        event_type: Optional[AuditEventType] = None,
        limit: Optional[int] = None,
    ) -> List[AuditEvent]:
        """
        Get recorded events, oldest first.

        Args:
            event_type: Only events of this type
            limit: Only the most recent N matching events
        """
        with self._lock:
            selected = [
                e for e in self._events
                if event_type is None or e.event_type == event_type
            ]
        if limit is not None:
            selected = selected[-limit:]
        return selected

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
