from typing import Callable, List, Optional, Protocol
import asyncio
import heapq
import itertools
import structlog

logger = structlog.get_logger(__name__)


class ScheduledCall(Protocol):
    def cancel(self) -> None:
        ...

    def cancelled(self) -> bool:
        ...


class Scheduler(Protocol):
    """Runs callbacks after a delay; every returned handle is cancellable"""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        ...


class AsyncioScheduler:
    """Scheduler backed by the running event loop"""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(delay, 0.0), _guarded(callback))


class _VirtualCall:
    def __init__(self, due: float, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class VirtualClockScheduler:
    """Deterministic scheduler driven by ``advance``; no wall-clock waits.

    Callbacks scheduled while advancing run in the same pass if they fall due
    inside the advanced window.
    """

    def __init__(self):
        self.now = 0.0
        self._queue: List = []
        self._sequence = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> _VirtualCall:
        call = _VirtualCall(self.now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (call.due, next(self._sequence), call))
        return call

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running due callbacks in order; returns how many ran"""
        target = self.now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, call = heapq.heappop(self._queue)
            self.now = due
            if call.cancelled():
                continue
            _guarded(call.callback)()
            ran += 1
        self.now = target
        return ran

    def run_all(self, limit: int = 1000) -> int:
        """Run every pending callback, however far in the future"""
        ran = 0
        while self._queue and ran < limit:
            ran += self.advance(max(self._queue[0][0] - self.now, 0.0))
        return ran

    @property
    def pending(self) -> int:
        return sum(1 for _, _, call in self._queue if not call.cancelled())


def _guarded(callback: Callable[[], None]) -> Callable[[], None]:
    def run() -> None:
        try:
            callback()
        except Exception as e:
            logger.error("Scheduled callback failed", error=str(e))
    return run
