"""Background maintenance scheduling.

Each maintenance job is a PeriodicTask with its own in-progress flag. A tick
that fires while the previous run is still active is skipped, not queued.
Failures are logged and the next tick proceeds normally.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog

from ..core.clock import Clock

logger = structlog.get_logger(__name__)


class PeriodicTask:
    """A named coroutine run every ``interval_seconds`` on a clock."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        action: Callable[[], Awaitable[Any]],
        clock: Clock,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.action = action
        self.clock = clock

        self._in_progress = False
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    async def run_once(self) -> bool:
        """Run the action unless a previous run is still active.

        Returns False when the run was skipped.
        """
        if self._in_progress:
            self.skipped += 1
            logger.warning("Skipping overlapping task run", task=self.name)
            return False

        self._in_progress = True
        try:
            await self.action()
            self.runs += 1
            self.last_error = None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.error("Background task failed", task=self.name, error=str(e))
        finally:
            self._in_progress = False
            self.last_run_at = self.clock.now()
        return True

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "interval_seconds": self.interval_seconds,
            "in_progress": self._in_progress,
            "runs": self.runs,
            "skipped": self.skipped,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }


class MaintenanceScheduler:
    """Drives a set of PeriodicTasks from a shared clock.

    ``cancel_event`` is set on stop so sweeps in flight can end between
    partitions instead of running to completion.
    """

    def __init__(self, clock: Clock):
        self.clock = clock
        self.tasks: Dict[str, PeriodicTask] = {}
        self.cancel_event = asyncio.Event()
        self._loops: List[asyncio.Task] = []
        self._runs: Set[asyncio.Task] = set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def add(
        self,
        name: str,
        interval_seconds: float,
        action: Callable[[], Awaitable[Any]],
    ) -> PeriodicTask:
        task = PeriodicTask(name, interval_seconds, action, self.clock)
        self.tasks[name] = task
        return task

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.cancel_event.clear()
        for task in self.tasks.values():
            self._loops.append(asyncio.create_task(self._tick_loop(task)))
        logger.info("Maintenance scheduler started", tasks=list(self.tasks))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.cancel_event.set()

        for loop in self._loops:
            loop.cancel()
            try:
                await loop
            except asyncio.CancelledError:
                pass
        self._loops = []

        # Runs in flight observe cancel_event and finish early
        if self._runs:
            await asyncio.gather(*self._runs, return_exceptions=True)
        logger.info("Maintenance scheduler stopped")

    async def _tick_loop(self, task: PeriodicTask) -> None:
        while self._running:
            await self.clock.sleep(task.interval_seconds)
            if not self._running:
                break
            run = asyncio.create_task(task.run_once())
            self._runs.add(run)
            run.add_done_callback(self._runs.discard)

    def status(self) -> List[Dict[str, Any]]:
        return [task.status() for task in self.tasks.values()]
