from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from estate_api.core.clock import Clock, utc_now
from estate_api.core.telemetry import job_context

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[Any]]
DelayFunc = Callable[[datetime], float]


def seconds_until_daily(now: datetime, *, hour: int, minute: int = 0) -> float:
    """Seconds from ``now`` until the next ``hour:minute`` in ``now``'s timezone."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


@dataclass(slots=True)
class ScheduledJob:
    name: str
    func: JobFunc
    first_delay: DelayFunc
    next_delay: DelayFunc


class JobScheduler:
    """Runs registered coroutines on fixed schedules, one asyncio task each.

    A failing run is logged and the job keeps its schedule.
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.clock = clock
        self._sleep = sleep
        self._jobs: list[ScheduledJob] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> tuple[ScheduledJob, ...]:
        return tuple(self._jobs)

    def add_daily(self, name: str, func: JobFunc, *, hour: int, minute: int = 0, run_on_start: bool = False) -> None:
        def next_delay(now: datetime) -> float:
            return seconds_until_daily(now, hour=hour, minute=minute)

        self._jobs.append(
            ScheduledJob(
                name=name,
                func=func,
                first_delay=(lambda _: 0.0) if run_on_start else next_delay,
                next_delay=next_delay,
            )
        )

    def add_interval(
        self,
        name: str,
        func: JobFunc,
        *,
        seconds: float,
        initial_delay: float | None = None,
    ) -> None:
        if seconds <= 0:
            raise ValueError("interval must be positive")
        first = seconds if initial_delay is None else initial_delay
        self._jobs.append(
            ScheduledJob(
                name=name,
                func=func,
                first_delay=lambda _: first,
                next_delay=lambda _: seconds,
            )
        )

    def start(self) -> None:
        if self._running:
            logger.warning("scheduler already running")
            return
        self._tasks = [asyncio.create_task(self._job_loop(job), name=f"scheduler:{job.name}") for job in self._jobs]
        self._running = True
        logger.info("scheduler started jobs=%s", ",".join(job.name for job in self._jobs))

    async def stop(self) -> None:
        if not self._running:
            return
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._running = False
        logger.info("scheduler stopped")

    def status(self) -> dict[str, Any]:
        return {"is_running": self._running, "tasks_count": len(self._tasks)}

    async def _job_loop(self, job: ScheduledJob) -> None:
        delay = job.first_delay(self.clock())
        while True:
            if delay > 0:
                await self._sleep(delay)
            await self._run_once(job)
            delay = job.next_delay(self.clock())

    async def _run_once(self, job: ScheduledJob) -> None:
        started_at = self.clock()
        with job_context(job.name):
            try:
                result = await job.func()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("scheduled job failed name=%s", job.name)
                return
            elapsed = (self.clock() - started_at).total_seconds()
            logger.info("scheduled job finished name=%s result=%s duration_s=%.3f", job.name, result, elapsed)
