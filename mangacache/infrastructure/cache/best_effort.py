"""Best-effort background writes.

A best-effort write is scheduled and forgotten by the caller: submit()
returns nothing to await, failures are logged and dropped. Tasks are
tracked (strong references, done-callback logging) rather than left as
unchecked asyncio tasks, so shutdown and tests can drain() them.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from mangacache.infrastructure.exceptions import CacheBackendError

logger = logging.getLogger(__name__)


class BestEffortWriter:
    """Tracks fire-and-forget cache writes on the running event loop."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of writes scheduled but not finished."""
        return len(self._tasks)

    def submit(self, write: Coroutine[Any, Any, Any], description: str) -> None:
        """Schedule write on the running loop. The caller never awaits it.

        Args:
            write: Coroutine performing the write.
            description: Short label for logs (e.g. 'L2 set manga:1').
        """
        task = asyncio.get_running_loop().create_task(write, name=f"best-effort:{description}")
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, description))

    def _on_done(self, task: asyncio.Task[Any], description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Best-effort write cancelled: %s", description)
            return
        exc = task.exception()
        if exc is None:
            return
        if isinstance(exc, CacheBackendError):
            logger.warning("Best-effort write dropped (%s): %s", description, exc.message)
        else:
            logger.error("Best-effort write failed (%s)", description, exc_info=exc)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for pending writes, including writes they schedule (e.g. at shutdown).

        Failures are already logged by the done callback.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            _, not_done = await asyncio.wait(list(self._tasks), timeout=remaining)
            if not_done and deadline is not None and loop.time() >= deadline:
                logger.warning("%s best-effort writes still pending after drain timeout", len(not_done))
                return
