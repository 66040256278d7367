"""Countdown clock with absolute-deadline semantics, plus the cancelable
handle used to schedule the toss-up end callback."""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TimerSnapshot:
    mode: str
    running: bool
    remaining_ms: int
    ends_at_ms: int


class Timer:
    """Single countdown clock for a room.

    While running, ``ends_at_ms`` is authoritative and ``remaining_ms`` is
    stale. While stopped, ``remaining_ms`` holds the paused value and
    ``ends_at_ms`` is 0. All times are integer milliseconds.
    """

    def __init__(self, mode: str, seconds: float, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self.mode = mode
        self.running = False
        self.remaining_ms = round(seconds * 1000)
        self.ends_at_ms = 0

    def reset(self, mode: str, seconds: float, start_running: bool):
        self.mode = mode
        self.remaining_ms = round(seconds * 1000)
        if start_running:
            self.running = True
            self.ends_at_ms = self._clock() + self.remaining_ms
        else:
            self.running = False
            self.ends_at_ms = 0

    def stop(self):
        """Freeze the clock at its true remaining time. No-op when stopped."""
        if not self.running:
            return
        self.remaining_ms = self.live_remaining_ms()
        self.running = False
        self.ends_at_ms = 0

    def resume(self) -> bool:
        """Restart a paused clock from its frozen value, if any time is left."""
        if self.running or self.remaining_ms <= 0:
            return False
        self.running = True
        self.ends_at_ms = self._clock() + self.remaining_ms
        return True

    def expire(self):
        self.running = False
        self.remaining_ms = 0
        self.ends_at_ms = 0

    def live_remaining_ms(self) -> int:
        if not self.running:
            return self.remaining_ms
        return max(0, self.ends_at_ms - self._clock())

    def snapshot(self) -> TimerSnapshot:
        # Pure read: a running clock past its deadline reads as stopped at zero.
        if not self.running:
            return TimerSnapshot(self.mode, False, self.remaining_ms, 0)
        remaining = self.live_remaining_ms()
        running = remaining > 0
        return TimerSnapshot(self.mode, running, remaining, self.ends_at_ms if running else 0)


class ScheduledEvent:
    """A deferred coroutine call that can be canceled before it fires.

    The callback receives the handle itself so it can check it is still the
    most recent schedule. Once ``cancel()`` returns the callback never runs,
    including when the sleep has finished and the callback is blocked waiting
    for the room lock.
    """

    def __init__(self, delay_ms: int, callback: Callable[["ScheduledEvent"], Awaitable[None]]):
        self.delay_ms = max(0, delay_ms)
        self.cancelled = False
        self.fired = False
        self._callback = callback
        self._task: Optional[asyncio.Task] = asyncio.create_task(self._run())

    async def _run(self):
        try:
            await asyncio.sleep(self.delay_ms / 1000)
            if self.cancelled:
                return
            self.fired = True
            await self._callback(self)
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Scheduled event callback failed")

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    @property
    def pending(self) -> bool:
        return not self.cancelled and self._task is not None and not self._task.done()
