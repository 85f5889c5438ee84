"""
============================================================================
Project Margin DCA v1.0.0
Order Id Counter - Monotonic Identifier Generator
============================================================================

Reliability Level: L6 Critical

The coordinator owns exactly one counter. It starts at 0 and advances by one
only after a submission has passed every check, so failed submissions
consume nothing and identifiers are never reused.

============================================================================
"""

from abc import ABC, abstractmethod

from protocol.interfaces import AtomicParticipant


class OrderIdCounter(ABC):
    """Post-increment identifier source."""

    @abstractmethod
    def peek(self) -> int:
        """Identifier the next successful submission will receive."""

    @abstractmethod
    def advance(self) -> int:
        """Consume and return the current identifier."""


class InMemoryOrderIdCounter(OrderIdCounter, AtomicParticipant):

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError(f"counter start must be non-negative, got: {start}")
        self._next = start

    def peek(self) -> int:
        return self._next

    def advance(self) -> int:
        current = self._next
        self._next += 1
        return current

    def snapshot(self) -> object:
        return self._next

    def restore(self, state: object) -> None:
        self._next = int(state)  # type: ignore[call-overload]


__all__ = ["OrderIdCounter", "InMemoryOrderIdCounter"]
