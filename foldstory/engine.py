"""Visualization engine contract and an in-memory implementation."""

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from foldstory.models import Snapshot, SnapshotSequence
from foldstory.store import Subscription

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[str], None]


class VisualizationEngine(Protocol):
    """The four operations and one event stream the core relies on."""

    @property
    def current_key(self) -> str | None: ...

    async def clear(self) -> None: ...

    async def load_snapshot_sequence(self, sequence: SnapshotSequence) -> None: ...

    async def apply_snapshot_by_key(self, key: str) -> None: ...

    def find_snapshot(self, key: str) -> Snapshot | None: ...

    def subscribe(self, listener: SnapshotListener) -> Subscription: ...


class MemoryEngine:
    """Headless engine that tracks snapshots and the current one.

    ``registration_delay_turns`` postpones snapshot registration by that
    many event-loop turns after a load returns. ``op_delay_s`` makes every
    mutating call suspend for that long.
    """

    def __init__(self, registration_delay_turns: int = 0, op_delay_s: float = 0.0) -> None:
        self.registration_delay_turns = registration_delay_turns
        self.op_delay_s = op_delay_s
        self.snapshots: dict[str, Snapshot] = {}
        self.title: str | None = None
        self.operations: list[tuple[str, str | None]] = []
        self.max_concurrency = 0
        self._active = 0
        self._current: str | None = None
        self._listeners: list[SnapshotListener] = []
        self._registration: asyncio.Task | None = None

    @property
    def current_key(self) -> str | None:
        return self._current

    def subscribe(self, listener: SnapshotListener) -> Subscription:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(remove)

    def _set_current(self, key: str | None) -> None:
        self._current = key
        if key is None:
            return
        for listener in list(self._listeners):
            listener(key)

    async def _enter(self, name: str, arg: str | None = None) -> None:
        self.operations.append((name, arg))
        self._active += 1
        self.max_concurrency = max(self.max_concurrency, self._active)
        if self.op_delay_s:
            await asyncio.sleep(self.op_delay_s)

    def _exit(self) -> None:
        self._active -= 1

    async def clear(self) -> None:
        await self._enter("clear")
        try:
            if self._registration is not None:
                self._registration.cancel()
                self._registration = None
            self.snapshots = {}
            self.title = None
            self._current = None
        finally:
            self._exit()

    async def load_snapshot_sequence(self, sequence: SnapshotSequence) -> None:
        await self._enter("load", sequence.metadata.title)
        try:
            self.snapshots = {}
            self.title = sequence.metadata.title
            if self.registration_delay_turns:
                self._registration = asyncio.get_running_loop().create_task(
                    self._register_later(sequence)
                )
            else:
                self._register(sequence)
        finally:
            self._exit()

    async def _register_later(self, sequence: SnapshotSequence) -> None:
        for _ in range(self.registration_delay_turns):
            await asyncio.sleep(0)
        self._registration = None
        self._register(sequence)

    def _register(self, sequence: SnapshotSequence) -> None:
        self.snapshots = {s.key: s for s in sequence.snapshots}
        logger.debug("Registered %d snapshots", len(self.snapshots))
        if sequence.snapshots:
            self._set_current(sequence.snapshots[0].key)

    async def apply_snapshot_by_key(self, key: str) -> None:
        await self._enter("apply", key)
        try:
            if key not in self.snapshots:
                raise KeyError(f"No snapshot registered for {key!r}")
            self._set_current(key)
        finally:
            self._exit()

    def find_snapshot(self, key: str) -> Snapshot | None:
        return self.snapshots.get(key)

    def navigate(self, key: str) -> None:
        """Simulate the user stepping to a snapshot inside the viewer."""
        if key not in self.snapshots:
            raise KeyError(f"No snapshot registered for {key!r}")
        self._set_current(key)
