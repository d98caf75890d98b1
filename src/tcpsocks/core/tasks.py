"""
=============================================================================
TASKS AND THE JOIN BARRIER
=============================================================================

Everything concurrent in tcpsocks is a plain thread running one task:

    - every accepted connection gets its own handler thread
    - the connection tracker is one long-lived thread
    - every client worker is its own thread

=============================================================================
WHY NOT A THREAD POOL?
=============================================================================

A bounded pool caps how many connections are processed at once. Here
that cap is exactly what we do NOT want:

    Server side:  no admission control. If 150 clients connect, 150
                  handlers run. A pool of 16 would quietly turn the
                  server into a queue.

    Client side:  the pool size IS the number of clients. All of them
                  must be dialing at the same time, including while they
                  sit in their retry loop.

So spawn() starts one daemon thread per task and returns immediately.
The accept loop never waits for a handler.

=============================================================================
THE JOIN BARRIER (WaitGroup)
=============================================================================

The client pool needs "block until N tasks are done, however they
ended". That is a counter guarded by a condition variable:

    wg = WaitGroup()
    for _ in range(n):
        wg.add(1)                    ← before the thread starts
        spawn(work, wait_group=wg)   ← task calls wg.done() when it ends
    wg.wait()                        ← returns when counter hits 0

The task runner calls done() in a `finally`, so a task that raises still
releases the barrier. A crashed worker must never hang the pool.

=============================================================================
"""

import threading
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field


logger = logging.getLogger(__name__)


class WaitGroup:
    """
    Join barrier over a known number of tasks.

    add() raises the outstanding count, done() lowers it, wait() blocks
    until it is back to zero.
    """

    def __init__(self):
        self._count = 0
        self._cond = threading.Condition()

    @property
    def pending(self) -> int:
        """Number of tasks that have not signalled done() yet."""
        with self._cond:
            return self._count

    def add(self, delta: int = 1):
        """
        Adjust the outstanding count.

        Raises:
            ValueError: If the count would drop below zero.
        """
        with self._cond:
            if self._count + delta < 0:
                raise ValueError("WaitGroup counter went negative")
            self._count += delta
            if self._count == 0:
                self._cond.notify_all()

    def done(self):
        """Signal that one task finished."""
        self.add(-1)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every added task has called done().

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            True if the barrier was satisfied, False on timeout.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)


@dataclass
class Task:
    """
    A deferred function call: "call this function with these arguments".

    Attributes:
        func: The function to execute.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        wait_group: Barrier to signal when the task ends, if any.
        submitted_at: Time the task was created.
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    wait_group: Optional[WaitGroup] = None
    submitted_at: float = field(default_factory=time.time)

    def run(self):
        """
        Execute the task.

        Exceptions are logged with their traceback and swallowed: one
        broken handler or worker must not take its siblings down. The
        wait group is always signalled.
        """
        start_time = time.time()

        try:
            self.func(*self.args, **self.kwargs)
            elapsed = time.time() - start_time
            logger.debug(f"{threading.current_thread().name} completed task in {elapsed:.3f}s")

        except Exception as e:
            elapsed = time.time() - start_time
            logger.exception(
                f"{threading.current_thread().name} task failed after {elapsed:.3f}s: {e}"
            )

        finally:
            if self.wait_group is not None:
                self.wait_group.done()


def spawn(
    func: Callable[..., Any],
    args: tuple = (),
    kwargs: Optional[dict] = None,
    wait_group: Optional[WaitGroup] = None,
    name: Optional[str] = None,
) -> threading.Thread:
    """
    Run `func` in a new daemon thread and return immediately.

    If a wait group is given it is add()-ed here, before the thread
    starts, so a fast task cannot call done() before the matching add().

    Args:
        func: The function to execute.
        args: Positional arguments for the function.
        kwargs: Keyword arguments for the function.
        wait_group: Barrier the task signals when it ends.
        name: Thread name (shows up in logs and debuggers).

    Returns:
        The started thread.
    """
    task = Task(func=func, args=args, kwargs=kwargs or {}, wait_group=wait_group)

    if wait_group is not None:
        wait_group.add(1)

    thread = threading.Thread(target=task.run, name=name, daemon=True)
    try:
        thread.start()
    except RuntimeError:
        # Could not start a thread: undo the add() so wait() can't hang.
        if wait_group is not None:
            wait_group.done()
        raise

    return thread
