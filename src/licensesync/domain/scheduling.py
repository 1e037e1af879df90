"""Cron-style recurring jobs on the asyncio event loop.

Each :class:`ScheduledTask` owns a timer task that sleeps until the next cron fire
time and then starts the job as its own task, so stopping the scheduler cancels
timers but never a run that is already in flight. A task never runs twice at
once: an overlapping fire is skipped and counted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from licensesync.domain.monitoring import Monitor

log = getLogger(__name__)

type Job = Callable[[], Awaitable[object]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TaskAlreadyRunningError(RuntimeError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Scheduled task {name!r} is already running")
        self.name = name


@dataclass(slots=True)
class TaskStats:
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    total_duration_seconds: float = 0.0
    last_run_at: datetime | None = None
    last_duration_seconds: float | None = None
    last_error: str | None = None

    @property
    def average_duration_seconds(self) -> float:
        return self.total_duration_seconds / self.total_runs if self.total_runs else 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_runs / self.total_runs if self.total_runs else 0.0


@dataclass(slots=True, frozen=True)
class TaskStatus:
    name: str
    schedule: str
    timezone: str
    scheduled: bool
    running: bool
    next_run_at: datetime | None
    stats: TaskStats


@dataclass(slots=True, frozen=True)
class SchedulerStatus:
    running: bool
    tasks: dict[str, TaskStatus]


class ScheduledTask:
    def __init__(
        self,
        name: str,
        schedule: str,
        job: Job,
        *,
        timezone: str = "UTC",
        monitor: Monitor | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not croniter.is_valid(schedule):
            raise ValueError(f"Invalid cron expression for {name!r}: {schedule!r}")
        try:
            self.tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone for {name!r}: {timezone!r}") from exc
        self.name = name
        self.schedule = schedule
        self.timezone = timezone
        self.job = job
        self.stats = TaskStats()
        self._monitor = monitor
        self._clock = clock
        self._running = False
        self._timer: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[bool]] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def scheduled(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def next_fire_time(self, after: datetime | None = None) -> datetime:
        base = (after or self._clock()).astimezone(self.tz)
        return croniter(self.schedule, base).get_next(datetime)

    def status(self) -> TaskStatus:
        return TaskStatus(
            name=self.name,
            schedule=self.schedule,
            timezone=self.timezone,
            scheduled=self.scheduled,
            running=self._running,
            next_run_at=self.next_fire_time() if self.scheduled else None,
            stats=self.stats,
        )

    async def run(self, *, manual: bool = False) -> bool:
        """Run the job once; returns False when skipped because a run is in flight."""

        if self._running:
            self.stats.skipped_runs += 1
            log.warning(f"Skipping {self.name}: previous run still in progress")
            if manual:
                raise TaskAlreadyRunningError(self.name)
            return False

        self._running = True
        trigger = "manual" if manual else "schedule"
        context = (
            self._monitor.record_sync_start(self.name, trigger=trigger)
            if self._monitor is not None
            else None
        )
        started = time.monotonic()
        self.stats.last_run_at = self._clock()
        log.info(f"Running scheduled task {self.name} ({trigger})")
        error: Exception | None = None
        try:
            await self.job()
        except Exception as exc:
            error = exc
            log.exception(f"Scheduled task {self.name} failed")
        finally:
            self._running = False

        duration = time.monotonic() - started
        stats = self.stats
        stats.total_runs += 1
        stats.total_duration_seconds += duration
        stats.last_duration_seconds = duration
        if error is None:
            stats.successful_runs += 1
        else:
            stats.failed_runs += 1
            stats.last_error = str(error) or type(error).__name__
        if self._monitor is not None and context is not None:
            self._monitor.record_sync_end(context, success=error is None, error=error)
        log.info(f"Scheduled task {self.name} finished in {duration:.2f}s")
        return True

    def start(self) -> None:
        if self.scheduled:
            return
        self._timer = asyncio.get_running_loop().create_task(
            self._timer_loop(), name=f"schedule-{self.name}"
        )

    def stop(self) -> None:
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()

    async def wait_idle(self) -> None:
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    async def _timer_loop(self) -> None:
        last_fire: datetime | None = None
        while True:
            now = self._clock()
            # an early wake-up or a clock step back must not re-fire the same slot
            base = now if last_fire is None else max(now, last_fire)
            fire_at = self.next_fire_time(base)
            delay = max((fire_at - now).total_seconds(), 0.0)
            log.debug(f"{self.name} next run at {fire_at.isoformat()}")
            await asyncio.sleep(delay)
            self._fire()
            last_fire = fire_at

    def _fire(self) -> None:
        task = asyncio.get_running_loop().create_task(self.run(), name=f"run-{self.name}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)


class Scheduler:
    """Registry of scheduled tasks with a ``stopped``/``running`` state."""

    def __init__(
        self,
        *,
        monitor: Monitor | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._monitor = monitor
        self._clock = clock
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tasks(self) -> dict[str, ScheduledTask]:
        return dict(self._tasks)

    def register(
        self,
        name: str,
        schedule: str,
        job: Job,
        *,
        timezone: str = "UTC",
    ) -> ScheduledTask:
        if name in self._tasks:
            raise ValueError(f"Scheduled task {name!r} is already registered")
        task = ScheduledTask(
            name, schedule, job, timezone=timezone, monitor=self._monitor, clock=self._clock
        )
        self._tasks[name] = task
        if self._running:
            task.start()
        log.info(f"Registered scheduled task {name} ({schedule} {timezone})")
        return task

    def start(self) -> None:
        if self._running:
            log.warning("Scheduler already running")
            return
        for task in self._tasks.values():
            task.start()
        self._running = True
        log.info(f"Scheduler started with {len(self._tasks)} task(s)")

    def stop(self) -> None:
        if not self._running:
            return
        for task in self._tasks.values():
            task.stop()
        self._running = False
        log.info("Scheduler stopped")

    async def trigger(self, name: str) -> TaskStats:
        task = self._tasks.get(name)
        if task is None:
            raise ValueError(f"Unknown scheduled task {name!r}")
        await task.run(manual=True)
        return task.stats

    async def wait_idle(self) -> None:
        await asyncio.gather(*(task.wait_idle() for task in self._tasks.values()))

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            running=self._running,
            tasks={name: task.status() for name, task in self._tasks.items()},
        )
