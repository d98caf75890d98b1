"""
=============================================================================
CONNECTION COUNTER
=============================================================================

Counts connections that completed a successful read.

=============================================================================
WHY A QUEUE IN FRONT OF THE COUNTER?
=============================================================================

Handlers do not touch the counter themselves. They drop a payload-less
event on a queue and move on; a single tracker thread drains the queue
and does the increment + log:

    Handler 1 ──┐
    Handler 2 ──┼──► notify() ──► [ queue ] ──► ConnectionTracker
    Handler 3 ──┘                                   │
                                                    ▼
                                          with lock:
                                              total += 1
                                              n = total
                                          log "Total connections: n"

The lock is held only for the increment-and-read, never while logging.

Ordering: the tracker counts events in the order they come off the
queue, which is not necessarily the order connections were accepted.
Nothing depends on that order; only the total matters.

=============================================================================
INVARIANT
=============================================================================

    counter == number of connections that completed ≥ 1 successful read

It starts at 0, only ever goes up by exactly 1 per event, and every
update is serialized by the lock.

=============================================================================
"""

import logging
import queue
import threading
from typing import Optional

from .core.tasks import spawn


logger = logging.getLogger(__name__)


class ConnectionCounter:
    """
    A lock-protected integer.

    Uses a Condition (which wraps a Lock) rather than a bare Lock so that
    wait_for() can sleep until a given total is reached instead of polling.
    """

    def __init__(self):
        self._value = 0
        self._cond = threading.Condition()

    @property
    def value(self) -> int:
        with self._cond:
            return self._value

    def increment(self) -> int:
        """Increment and return the new value."""
        with self._cond:
            self._value += 1
            value = self._value
            self._cond.notify_all()
        return value

    def wait_for(self, total: int, timeout: Optional[float] = None) -> bool:
        """
        Block until the counter reaches at least `total`.

        Returns:
            True if reached, False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._value >= total, timeout)


class ConnectionTracker:
    """
    Single consumer of connection events.

    Usage:
        tracker = ConnectionTracker()
        tracker.start()          # spawn the consumer thread
        ...
        tracker.notify()         # from any handler thread
        tracker.counter.value    # current total
    """

    def __init__(
        self,
        counter: Optional[ConnectionCounter] = None,
        queue_size: int = 0,
    ):
        """
        Args:
            counter: Counter to increment. A fresh one if not given.
            queue_size: Max pending events. 0 = unbounded, so notify()
                        never blocks.
        """
        self.counter = counter or ConnectionCounter()
        self._events: queue.Queue[None] = queue.Queue(maxsize=queue_size)
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def total(self) -> int:
        return self.counter.value

    @property
    def pending(self) -> int:
        """Events queued but not yet counted."""
        return self._events.qsize()

    def start(self) -> threading.Thread:
        """Start the consumer thread. Calling it again is a no-op."""
        with self._lock:
            if self._thread is None:
                self._thread = spawn(self._consume, name="ConnectionTracker")
            return self._thread

    def notify(self):
        """
        Report one connection that completed a read.

        The event carries no data. Blocks only when a bounded queue is full.
        """
        self._events.put(None)

    def _consume(self):
        # The queue is never closed, so this runs for the life of the process.
        while True:
            self._events.get()
            count = self.counter.increment()
            logger.info(f"New connection received. Total connections: {count}")
