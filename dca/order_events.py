"""
============================================================================
Project Margin DCA v1.0.0
Order Events - Lifecycle Event Log and Subscriber Fan-Out
============================================================================

Reliability Level: L6 Critical
Traceability: Every event carries the correlation_id of the call that emitted it

EVENT TYPES:
    - order.created:   (owner, order_id)     on successful submission
    - order.cancelled: (owner, order_id)     on cancellation
    - order.executed:  (executor, order_id)  on successful execution

Events carry identifying keys only. Observers re-read the store for details.

Events are emitted after the state change they describe is complete, so a
failing subscriber is logged and skipped; it never undoes the change.

============================================================================
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Event Types
# =============================================================================

class OrderEventType(Enum):
    CREATED = "order.created"
    CANCELLED = "order.cancelled"
    EXECUTED = "order.executed"


@dataclass(frozen=True)
class OrderEvent:
    """
    Lifecycle event.

    actor is the owner for created/cancelled events and the executor for
    executed events.
    """
    type: OrderEventType
    actor: str
    order_id: int
    correlation_id: str
    timestamp: int

    def to_dict(self) -> Dict[str, object]:
        actor_key = "executor" if self.type is OrderEventType.EXECUTED else "owner"
        return {
            "type": self.type.value,
            actor_key: self.actor,
            "order_id": self.order_id,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp,
        }


EventSubscriber = Callable[[OrderEvent], None]


# =============================================================================
# Event Log
# =============================================================================

class OrderEventLog:
    """
    Append-only event history with synchronous subscriber fan-out.
    """

    def __init__(self, max_history_size: int = 10_000) -> None:
        if max_history_size <= 0:
            raise ValueError(
                f"max_history_size must be positive, got: {max_history_size}"
            )
        self._max_history_size = max_history_size
        self._history: List[OrderEvent] = []
        self._subscribers: List[EventSubscriber] = []
        self._counts: Dict[str, int] = {t.value: 0 for t in OrderEventType}

    def subscribe(self, subscriber: EventSubscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: EventSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def emit(self, event: OrderEvent) -> int:
        """
        Record event and notify subscribers.

        Returns:
            Number of subscribers notified successfully
        """
        self._history.append(event)
        if len(self._history) > self._max_history_size:
            self._history = self._history[-self._max_history_size:]
        self._counts[event.type.value] += 1

        notified = 0
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
                notified += 1
            except Exception as e:
                logger.error(
                    f"[DCA-EVENTS] Subscriber failed | event_type={event.type.value} | "
                    f"order_id={event.order_id} | error={str(e)} | "
                    f"correlation_id={event.correlation_id}"
                )

        logger.info(
            f"[DCA-EVENTS] {event.type.value} | actor={event.actor} | "
            f"order_id={event.order_id} | correlation_id={event.correlation_id}"
        )
        return notified

    def history(
        self,
        order_id: Optional[int] = None,
        event_type: Optional[OrderEventType] = None,
    ) -> List[OrderEvent]:
        return [
            event for event in self._history
            if (order_id is None or event.order_id == order_id)
            and (event_type is None or event.type is event_type)
        ]

    def counts(self) -> Dict[str, int]:
        return dict(self._counts)

    def clear(self) -> None:
        self._history = []
        self._counts = {t.value: 0 for t in OrderEventType}


__all__ = [
    "OrderEventType",
    "OrderEvent",
    "EventSubscriber",
    "OrderEventLog",
]
