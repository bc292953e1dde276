"""FIFO serialization of operations against the visualization engine."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from foldstory.errors import EngineOperationFailed

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationQueue:
    """Runs at most one engine operation at a time, in submission order.

    A failing operation is logged and reported to whoever awaits it as
    ``EngineOperationFailed``; operations queued behind it still run.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    @property
    def busy(self) -> bool:
        return self._lock.locked() or bool(self._pending)

    async def run(self, op: Callable[[], Awaitable[T]], label: str = "operation") -> T:
        async with self._lock:
            logger.debug("Running engine %s", label)
            try:
                result = await op()
            except Exception as e:
                self.failed += 1
                logger.exception("Engine %s failed", label)
                raise EngineOperationFailed(f"Engine {label} failed: {e}") from e
            self.completed += 1
            return result

    def submit(self, op: Callable[[], Awaitable[T]], label: str = "operation") -> "asyncio.Task[T]":
        """Queue an operation without waiting for it. Must be called inside a running loop."""
        task = asyncio.get_running_loop().create_task(self.run(op, label))
        self._pending.add(task)
        task.add_done_callback(self._forget)
        return task

    def _forget(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled():
            # Already logged in run(); mark it retrieved
            task.exception()

    async def join(self) -> None:
        """Wait until every submitted operation has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
