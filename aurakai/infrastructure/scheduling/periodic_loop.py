from typing import Awaitable, Callable, Optional
import asyncio
import structlog

logger = structlog.get_logger(__name__)


class PeriodicLoop:
    """Runs an async callable on a fixed interval until stopped.

    ``stop`` prevents the next iteration; an iteration already running is
    allowed to finish.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[None]]):
        self.name = name
        self.interval = interval
        self.func = func
        self.iterations = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"loop:{self.name}")
        logger.info("Periodic loop started", loop=self.name, interval=self.interval)

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.func()
            except Exception as e:
                logger.error("Periodic loop iteration failed", loop=self.name, error=str(e))
            self.iterations += 1

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Periodic loop stopped", loop=self.name, iterations=self.iterations)
