"""
Pausable periodic timer.

``PausableTimer.tick()`` completes once per ``interval`` of *unpaused* time.
Time spent paused never counts towards the interval, no matter how many
pause/resume cycles happen between two ticks. A late caller only waits for
what is left of the current period; missed periods are not queued up.
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable


class TickResult(Enum):
    COMPLETED = "completed"
    PAUSED = "paused"


class PausableTimer:

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Args:
            interval: Period in seconds, must be positive.
            clock: Monotonic clock returning seconds.
            sleep: Coroutine function suspending for the given seconds.
        """
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval}")

        self._interval = interval
        self._clock = clock
        self._sleep = sleep

        self._paused = False
        # Unpaused time consumed from the current period up to _last_interaction
        self._consumed = 0.0
        self._last_interaction = clock()

    @property
    def interval(self) -> float:
        return self._interval

    def with_interval(self, interval: float) -> 'PausableTimer':
        """A fresh timer with a new interval, using the same clock."""
        return PausableTimer(interval, clock=self._clock, sleep=self._sleep)

    def is_paused(self) -> bool:
        return self._paused

    def remaining(self) -> float:
        """Unpaused time left until the next tick completes."""
        consumed = self._consumed
        if not self._paused:
            consumed += self._clock() - self._last_interaction
        return max(0.0, self._interval - consumed)

    async def tick(self) -> TickResult:
        """
        Wait for the current period to run out.

        Returns ``TickResult.PAUSED`` immediately while paused. The timer is
        only modified after the wait finished, so cancelling a pending tick
        leaves the accounting untouched.
        """
        if self._paused:
            return TickResult.PAUSED

        await self._sleep(self.remaining())

        self._consumed = 0.0
        self._last_interaction = self._clock()
        return TickResult.COMPLETED

    def pause(self, paused: bool) -> None:
        """
        Pause or resume the timer.

        Pausing an already paused timer (or resuming a running one) is a no-op.
        """
        if self._paused == paused:
            return

        now = self._clock()
        if paused:
            self._consumed += now - self._last_interaction

        self._paused = paused
        self._last_interaction = now

    def reset(self) -> None:
        """Drop partial progress and start a full interval from now."""
        self._consumed = 0.0
        self._last_interaction = self._clock()

    def fire_now(self) -> None:
        """Let the next unpaused tick complete without waiting."""
        self._consumed = self._interval
        self._last_interaction = self._clock()
