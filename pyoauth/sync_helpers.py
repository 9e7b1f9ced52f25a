"""Synchronous helpers for the async engine.

Provides a blocking wrapper that lets sync code (the CLI, GUI callbacks,
scripts) drive engine coroutines. Work runs on a persistent background
loop so scheduled refresh and poll tasks outlive each call.
"""

from __future__ import annotations

import asyncio
import threading
import time

from typing import TYPE_CHECKING, Any, TypeVar


if TYPE_CHECKING:
    from collections.abc import Coroutine


T = TypeVar("T")


class _BackgroundLoopHolder:
    """Holder for the background event loop to avoid global statement."""

    loop: asyncio.AbstractEventLoop | None = None
    thread: threading.Thread | None = None


_background_holder = _BackgroundLoopHolder()
_background_lock = threading.Lock()


def get_background_loop() -> asyncio.AbstractEventLoop:
    """Get or create the background event loop.

    The loop runs forever in a daemon thread and persists across
    ``run_async`` calls.
    """
    with _background_lock:
        if _background_holder.loop is not None and _background_holder.loop.is_running():
            return _background_holder.loop

        loop = asyncio.new_event_loop()
        _background_holder.loop = loop

        def run_loop() -> None:
            asyncio.set_event_loop(loop)
            loop.run_forever()

        _background_holder.thread = threading.Thread(
            target=run_loop, name="pyoauth-loop", daemon=True
        )
        _background_holder.thread.start()

        for _ in range(50):  # 500ms max wait
            if loop.is_running():
                break
            time.sleep(0.01)

        return loop


def run_async(
    coro: Coroutine[Any, Any, T],
    timeout: float | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> T:
    """Run an async coroutine from sync code.

    NOTE: This function CANNOT be called from a coroutine running on the
    target loop; it would deadlock. Use ``await`` directly in async code.

    Parameters
    ----------
    coro : Coroutine
        The coroutine to run.
    timeout : float, optional
        Timeout in seconds. None waits indefinitely.
    loop : asyncio.AbstractEventLoop, optional
        Loop to run on. Defaults to the background loop.

    Returns
    -------
    T
        The result of the coroutine.

    Raises
    ------
    TimeoutError
        If the operation times out.
    RuntimeError
        If called from within the target loop (would deadlock).
    """
    target = loop or get_background_loop()

    try:
        running_loop = asyncio.get_running_loop()
    except RuntimeError:
        running_loop = None

    if running_loop is target:
        coro.close()
        raise RuntimeError(
            "run_async() cannot be called from an async context on the target loop. "
            "Use 'await' directly instead."
        )

    future = asyncio.run_coroutine_threadsafe(coro, target)
    return future.result(timeout=timeout)
