"""Publish/subscribe state store with selectors and a debouncer."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")
T = TypeVar("T")


class Subscription:
    """Handle returned by ``subscribe``. Usable as a context manager."""

    def __init__(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe = unsubscribe
        self.closed = False

    def unsubscribe(self) -> None:
        if not self.closed:
            self.closed = True
            self._unsubscribe()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class Store(Generic[S]):
    """Holds one immutable state value; every update publishes a new one.

    Listeners receive ``(new, old)`` after the new state is in place, so
    they never see a half-applied transition.
    """

    def __init__(self, initial: S) -> None:
        self._state = initial
        self._listeners: list[Callable[[S, S], None]] = []

    @property
    def state(self) -> S:
        return self._state

    def update(self, transition: Callable[[S], S]) -> S:
        old = self._state
        new = transition(old)
        if new is old:
            return old
        self._state = new
        for listener in list(self._listeners):
            try:
                listener(new, old)
            except Exception:
                logger.exception("State listener %r failed", listener)
        return new

    def subscribe(self, listener: Callable[[S, S], None]) -> Subscription:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(remove)

    def select(
        self,
        projection: Callable[[S], T],
        listener: Callable[[T], None],
        emit_current: bool = True,
    ) -> Subscription:
        """Subscribe to one projection of the state, skipping unchanged values."""
        last = [projection(self._state)]
        if emit_current:
            listener(last[0])

        def on_change(new: S, old: S) -> None:
            value = projection(new)
            if value == last[0]:
                return
            last[0] = value
            listener(value)

        return self.subscribe(on_change)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)


class Debouncer(Generic[T]):
    """Collapse a burst of values into one callback with the last value."""

    def __init__(self, delay_ms: int, callback: Callable[[T], None]) -> None:
        self.delay_ms = delay_ms
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._value: T | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def push(self, value: T) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._value = value
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_ms / 1000, self._fire)

    def _fire(self) -> None:
        self._handle = None
        value, self._value = self._value, None
        self._callback(value)

    def flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            self._value = None
