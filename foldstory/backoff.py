"""Bounded exponential backoff around an async probe."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from foldstory.errors import ExhaustedRetries

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Retryable:
    reason: str
    queue_position: int | None = None


@dataclass(frozen=True)
class Fatal:
    error: Exception


ProbeOutcome = Success | Retryable | Fatal


@dataclass(frozen=True)
class PollTick:
    """Reported after every attempt that did not finish the poll."""
    attempt: int
    max_attempts: int
    message: str
    queue_position: int | None = None
    next_delay_ms: int | None = None


class BackoffPoller:
    """Call a probe until it succeeds, fails fatally, or the attempt budget runs out.

    Delays double from ``initial_delay_ms`` and are clamped to
    ``[min_delay_ms, max_delay_ms]``. No delay follows the final attempt.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay_ms: int = 1000,
        min_delay_ms: int = 1000,
        max_delay_ms: int = 10000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if min_delay_ms > max_delay_ms:
            raise ValueError("min_delay_ms must not exceed max_delay_ms")
        self.max_attempts = max_attempts
        self.initial_delay_ms = initial_delay_ms
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep

    def delay_for(self, attempt: int) -> int:
        """Delay in ms to wait after the given 1-based attempt."""
        raw = self.initial_delay_ms * (2 ** (attempt - 1))
        return max(self.min_delay_ms, min(raw, self.max_delay_ms))

    async def run(
        self,
        probe: Callable[[int], Awaitable[Success[T] | Retryable | Fatal]],
        on_tick: Callable[[PollTick], None] | None = None,
    ) -> T:
        last_reason: str | None = None
        for attempt in range(1, self.max_attempts + 1):
            outcome = await probe(attempt)

            if isinstance(outcome, Success):
                logger.debug("Probe succeeded on attempt %d/%d", attempt, self.max_attempts)
                return outcome.value
            if isinstance(outcome, Fatal):
                logger.debug("Probe failed fatally on attempt %d: %s", attempt, outcome.error)
                raise outcome.error

            last_reason = outcome.reason
            is_last = attempt == self.max_attempts
            delay_ms = None if is_last else self.delay_for(attempt)
            logger.debug(
                "Attempt %d/%d not done (%s), next delay %s ms",
                attempt, self.max_attempts, outcome.reason, delay_ms,
            )
            if on_tick is not None:
                on_tick(PollTick(
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    message=outcome.reason,
                    queue_position=outcome.queue_position,
                    next_delay_ms=delay_ms,
                ))
            if delay_ms is not None:
                await self._sleep(delay_ms / 1000)

        raise ExhaustedRetries(self.max_attempts, last_reason)
