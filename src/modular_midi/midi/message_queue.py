"""
Message Queue

Bounded, ordered channel of control-change events between any number of
producers and the single MIDI writer. The queue offers two send modes and
leaves the choice to the caller: waveform generators block when it is full,
the serial ingestor drops.
"""

import time
import threading
import logging
from collections import deque
from typing import Deque, Dict, Any, Optional

from .messages import ControlChangeEvent
from ..errors import InvalidEventError, QueueClosedError, QueueFullError

log = logging.getLogger(__name__)

DEFAULT_CAPACITY = 128


class MessageQueue:
    """Thread-safe bounded FIFO of ControlChangeEvent"""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"Queue capacity must be at least 1, got {capacity}")

        self.capacity = capacity
        self._items: Deque[ControlChangeEvent] = deque()
        self._lock = threading.Lock()
        self._not_empty = threading.Condition(self._lock)
        self._not_full = threading.Condition(self._lock)
        self._closed = False

        self.metrics = {
            'enqueued': 0,
            'dropped': 0,
            'received': 0,
        }

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def send(self, event: ControlChangeEvent, timeout: Optional[float] = None):
        """
        Blocking send; waits until a slot frees up

        Args:
            event: Event to enqueue
            timeout: Seconds to wait for a slot (None waits forever)

        Raises:
            QueueClosedError: if the queue is or becomes closed
            QueueFullError: if timeout expired with the queue still full
        """
        self._check_event(event)

        with self._not_full:
            deadline = None if timeout is None else time.monotonic() + timeout

            while len(self._items) >= self.capacity and not self._closed:
                if deadline is None:
                    self._not_full.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise QueueFullError(f"Queue full after waiting {timeout:.2f}s")
                    self._not_full.wait(remaining)

            if self._closed:
                raise QueueClosedError("Cannot send on a closed queue")

            self._append(event)

    def try_send(self, event: ControlChangeEvent) -> bool:
        """
        Non-blocking send

        Returns:
            True if the event was enqueued, False if it was dropped because
            the queue was full or closed
        """
        self._check_event(event)

        with self._lock:
            if self._closed or len(self._items) >= self.capacity:
                self.metrics['dropped'] += 1
                return False

            self._append(event)
            return True

    def receive(self, timeout: Optional[float] = None) -> ControlChangeEvent:
        """
        Blocking receive of the oldest event

        Events still queued when the queue is closed are handed out first.

        Raises:
            QueueClosedError: once the queue is closed and drained
            TimeoutError: if timeout expired with nothing to receive
        """
        with self._not_empty:
            deadline = None if timeout is None else time.monotonic() + timeout

            while not self._items:
                if self._closed:
                    raise QueueClosedError("Queue closed")
                if deadline is None:
                    self._not_empty.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        raise TimeoutError("No event received")
                    self._not_empty.wait(remaining)

            event = self._items.popleft()
            self.metrics['received'] += 1
            self._not_full.notify()
            return event

    def close(self):
        """Close the queue and wake every waiting sender and receiver"""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._not_empty.notify_all()
            self._not_full.notify_all()

        log.debug("Message queue closed")

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self.metrics,
                'depth': len(self._items),
                'capacity': self.capacity,
                'closed': self._closed,
            }

    def _append(self, event: ControlChangeEvent):
        # Caller holds the lock
        self._items.append(event)
        self.metrics['enqueued'] += 1
        self._not_empty.notify()

    @staticmethod
    def _check_event(event):
        if not isinstance(event, ControlChangeEvent):
            raise InvalidEventError(f"Expected ControlChangeEvent, got {type(event).__name__}")
