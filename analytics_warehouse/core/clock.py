"""Clock abstraction driving the background maintenance tasks."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple, Union


class Clock:
    """Source of the current time and of interval waits."""

    def now(self) -> datetime:
        raise NotImplementedError

    async def sleep(self, seconds: float) -> None:
        raise NotImplementedError


class SystemClock(Clock):
    """Wall-clock time and real ``asyncio.sleep`` waits."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """Clock that only moves when told to.

    Sleepers are released by ``advance`` once their deadline has passed, so
    scheduled tasks can be driven deterministically in tests.

    Usage:
        clock = ManualClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        await clock.advance(hours=24)
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._sleepers: List[Tuple[datetime, asyncio.Future]] = []

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        """Jump to ``when`` without releasing sleepers."""
        self._now = when

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._sleepers.append((self._now + timedelta(seconds=seconds), future))
        await future

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, future in self._sleepers if not future.done())

    async def advance(
        self, delta: Union[timedelta, float, None] = None, **kwargs: float
    ) -> None:
        """Move time forward and wake every sleeper whose deadline passed.

        Accepts a timedelta, a number of seconds, or timedelta keyword
        arguments (``hours=24``).
        """
        if delta is None:
            delta = timedelta(**kwargs)
        elif not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self._now += delta

        remaining = []
        for deadline, future in self._sleepers:
            if future.done():
                continue
            if deadline <= self._now:
                future.set_result(None)
            else:
                remaining.append((deadline, future))
        self._sleepers = remaining

        # Let woken tasks run up to their next await
        await asyncio.sleep(0)
