"""
In-memory work queue for onboarding jobs.

Delivery is at-least-once: a popped message is reserved, and only goes
away when the worker deletes it. Releasing a message puts it back with a
delay, which is how retries are scheduled.
"""

import itertools
import time
from dataclasses import dataclass
from threading import Condition
from typing import Callable, Dict, List, Optional

from .config import QUEUE_NAME
from .errors import QueueUnavailableError


@dataclass
class QueuedMessage:
    """One unit of work. Only the organization id travels with it."""

    message_id: int
    organization_id: int
    attempts: int = 0
    available_at: float = 0.0


class WorkQueue:
    """
    Thread-safe named queue with delayed availability.

    Args:
        name: Queue name, so onboarding traffic stays separate
        clock: Monotonic time source (overridable in tests)
    """

    def __init__(self, name: str = QUEUE_NAME, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self._clock = clock
        self._cond = Condition()
        self._ready: List[QueuedMessage] = []
        self._reserved: Dict[int, QueuedMessage] = {}
        self._ids = itertools.count(1)
        self._closed = False

    def push(self, organization_id: int, delay: float = 0.0) -> QueuedMessage:
        with self._cond:
            if self._closed:
                raise QueueUnavailableError(f"Queue '{self.name}' is closed")
            message = QueuedMessage(
                message_id=next(self._ids),
                organization_id=organization_id,
                available_at=self._clock() + delay,
            )
            self._ready.append(message)
            self._cond.notify()
            return message

    def pop(self, timeout: float = 0.0) -> Optional[QueuedMessage]:
        """
        Reserve the oldest available message and count the attempt.

        Waits up to ``timeout`` seconds for one to become available.
        """
        deadline = time.monotonic() + timeout
        with self._cond:
            while True:
                message = self._take_available()
                if message is not None:
                    message.attempts += 1
                    self._reserved[message.message_id] = message
                    return message
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(min(remaining, self._next_wait()))

    def release(self, message: QueuedMessage, delay: float = 0.0) -> None:
        """Return a reserved message to the queue after ``delay`` seconds."""
        with self._cond:
            self._reserved.pop(message.message_id, None)
            message.available_at = self._clock() + delay
            self._ready.append(message)
            self._cond.notify()

    def delete(self, message: QueuedMessage) -> None:
        with self._cond:
            self._reserved.pop(message.message_id, None)
            self._cond.notify_all()

    def close(self) -> None:
        """Stop accepting new messages. Queued ones can still be drained."""
        with self._cond:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def size(self) -> int:
        """Messages waiting, including delayed ones."""
        with self._cond:
            return len(self._ready)

    def in_flight(self) -> int:
        with self._cond:
            return len(self._reserved)

    def is_drained(self) -> bool:
        """True when nothing is waiting or reserved."""
        with self._cond:
            return not self._ready and not self._reserved

    def _take_available(self) -> Optional[QueuedMessage]:
        now = self._clock()
        for i, message in enumerate(self._ready):
            if message.available_at <= now:
                return self._ready.pop(i)
        return None

    def _next_wait(self) -> float:
        if not self._ready:
            return 0.1
        soonest = min(m.available_at for m in self._ready)
        return max(0.01, min(0.1, soonest - self._clock()))

    def __len__(self) -> int:
        return self.size()

    def __repr__(self) -> str:
        return f"<WorkQueue name={self.name!r} waiting={len(self._ready)} reserved={len(self._reserved)}>"
