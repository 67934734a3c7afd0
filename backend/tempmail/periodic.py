"""Fixed-interval background tasks with explicit cancellation."""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from .observability.logging_config import get_logger

logger = get_logger(__name__)

Job = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """Runs ``job`` every ``interval`` seconds until stopped.

    The first run happens one interval after ``start``. A failing run is
    logged and does not stop the schedule.
    """

    def __init__(self, name: str, interval: float, job: Job):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self.job = job
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info(f"Started periodic task {self.name} (every {self.interval}s)")

    async def run_once(self) -> Any:
        result = self.job()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Periodic task {self.name} failed: {e}", exc_info=True)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped periodic task {self.name}")
