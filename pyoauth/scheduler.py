"""Keyed, cancellable delayed work on an asyncio loop.

The engine arms one task per key (``refresh:<provider>``,
``poll:<provider>``). Scheduling under a key that already has a task
replaces it, so a provider never has two refreshes or two poll loops
pending at once.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time

from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


logger = logging.getLogger("pyoauth.scheduler")


def refresh_key(provider_id: str) -> str:
    """Scheduler key for a provider's refresh task."""
    return f"refresh:{provider_id}"


def poll_key(provider_id: str) -> str:
    """Scheduler key for a provider's device-code poll task."""
    return f"poll:{provider_id}"


class ScheduledTask:
    """Handle to one pending operation.

    Attributes
    ----------
    key : str
        The scheduler key the task was registered under.
    due : float
        Unix timestamp at which the operation is due to run.
    """

    def __init__(self, key: str, task: asyncio.Task[Any], due: float) -> None:
        """Wrap an asyncio task."""
        self.key = key
        self.due = due
        self._task = task

    @property
    def task(self) -> asyncio.Task[Any]:
        """The underlying asyncio task."""
        return self._task

    def done(self) -> bool:
        """Whether the operation finished, failed or was cancelled."""
        return self._task.done()

    def cancelled(self) -> bool:
        """Whether the operation was cancelled."""
        return self._task.cancelled()

    def cancel(self) -> None:
        """Cancel the operation. Safe to call from any thread."""
        if self._task.done():
            return
        loop = self._task.get_loop()
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._task.cancel()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(self._task.cancel)

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"ScheduledTask(key={self.key!r}, due={self.due:.3f}, {state})"


class Scheduler:
    """Run operations after a delay, at most one per key.

    Parameters
    ----------
    loop : asyncio.AbstractEventLoop, optional
        Loop to create tasks on. Defaults to the running loop at the time
        ``schedule`` is called.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Initialize the scheduler."""
        self._loop = loop
        self._tasks: dict[str, ScheduledTask] = {}
        self._lock = threading.Lock()

    def schedule(
        self,
        key: str,
        delay: float,
        operation: Callable[[], Awaitable[Any]],
    ) -> ScheduledTask:
        """Run ``operation`` after ``delay`` seconds under ``key``.

        Must be called from the scheduler's loop thread. A previous task
        under the same key is cancelled, unless it is the task making this
        call (an operation rescheduling itself).

        Parameters
        ----------
        key : str
            Replacement key, e.g. ``refresh:github``.
        delay : float
            Seconds to wait; zero or negative runs on the next loop
            iteration.
        operation : callable
            Zero-argument coroutine function to run.

        Returns
        -------
        ScheduledTask
            Handle that can cancel the operation.
        """
        loop = self._loop or asyncio.get_running_loop()
        delay = max(0.0, delay)
        task = loop.create_task(self._run(key, delay, operation), name=f"pyoauth:{key}")
        handle = ScheduledTask(key, task, time.time() + delay)

        current = _current_task()
        with self._lock:
            previous = self._tasks.get(key)
            self._tasks[key] = handle
        if previous is not None and previous.task is not current:
            previous.cancel()

        logger.debug("Scheduled %s in %.1fs", key, delay)
        return handle

    async def _run(self, key: str, delay: float, operation: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.sleep(delay)
            await operation()
        except Exception:
            logger.exception("Scheduled operation %s failed", key)
        finally:
            current = _current_task()
            with self._lock:
                handle = self._tasks.get(key)
                if handle is not None and handle.task is current:
                    del self._tasks[key]

    def get(self, key: str) -> ScheduledTask | None:
        """Return the pending task under ``key``, if any."""
        with self._lock:
            handle = self._tasks.get(key)
        if handle is None or handle.done():
            return None
        return handle

    def cancel(self, key: str) -> bool:
        """Cancel the task under ``key``.

        Returns
        -------
        bool
            True if a task was registered under ``key``.
        """
        with self._lock:
            handle = self._tasks.pop(key, None)
        if handle is None:
            return False
        if handle.task is not _current_task():
            handle.cancel()
        logger.debug("Cancelled %s", key)
        return True

    def cancel_all(self) -> int:
        """Cancel every pending task. Returns how many were registered."""
        with self._lock:
            handles = list(self._tasks.values())
            self._tasks.clear()
        current = _current_task()
        for handle in handles:
            if handle.task is not current:
                handle.cancel()
        return len(handles)

    def pending(self) -> list[str]:
        """Keys that currently have a task waiting or running."""
        with self._lock:
            return sorted(key for key, handle in self._tasks.items() if not handle.done())

    def __len__(self) -> int:
        return len(self.pending())


def _current_task() -> asyncio.Task[Any] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
