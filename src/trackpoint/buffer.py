"""Ordered in-memory buffer of pending events."""

from __future__ import annotations

from typing import Iterator, List

from .models import Event


class EventBuffer:
    """FIFO of pending events with head-of-line requeue.

    The buffer is unbounded. Batches are cut from the head; a batch whose
    delivery failed is spliced back at the head so it goes out before any
    event queued after it. No deduplication is performed.

    Args:
        max_batch_size: Upper bound on the size of a cut batch, and the
            length at which ``enqueue`` reports that a flush is due.
    """

    def __init__(self, max_batch_size: int) -> None:
        self.max_batch_size = max_batch_size
        self._events: List[Event] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def enqueue(self, event: Event) -> bool:
        """Append ``event`` at the tail.

        Returns:
            True if the buffer now holds at least ``max_batch_size`` events.
        """
        self._events.append(event)
        return len(self._events) >= self.max_batch_size

    def cut_batch(self) -> List[Event]:
        """Remove and return up to ``max_batch_size`` events from the head.

        An empty list means there is nothing to send.
        """
        batch = self._events[: self.max_batch_size]
        del self._events[: len(batch)]
        return batch

    def requeue_front(self, batch: List[Event]) -> None:
        """Put a previously cut batch back at the head, keeping its order."""
        self._events[:0] = batch

    def clear(self) -> None:
        self._events.clear()
