"""Burst Scheduler.

A coarse cron schedule triggers bursts; each burst fires a probe round every
``ping_interval`` seconds until ``burst_duration`` seconds have elapsed since
the burst began. Each round probes all targets concurrently and records the
outcomes in the statistics store.

States:
    IDLE            initial state, and resting state between bursts
    BURST_RUNNING   repeating round timer active

If the cron schedule fires while a burst is running, the running burst's
timer is cancelled and a fresh burst window starts (cancel-and-restart).
Rounds already in flight are never cancelled by a burst ending or
restarting; they finish and record their outcomes.
A restart first fires any tick that is already due, so the final round of
a window is not lost when the next firing lands on the same instant.

Author: PingBurst Team
Version: 1.0.0
"""

import asyncio
import logging
import math
from enum import Enum
from typing import List, Optional, Set

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from ..errors import ConfigurationError
from ..health.prober import ProbeOutcome, Prober
from ..metrics.statistics import StatisticsStore
from .targets import TargetRegistry

logger = logging.getLogger(__name__)


class BurstState(Enum):
    """States of the burst scheduler."""
    IDLE = "idle"
    BURST_RUNNING = "burst_running"


# Standard cron weekday numbering: 0 and 7 are Sunday
CRON_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _weekday_number(token: str) -> int:
    token = token.strip().lower()
    if token in CRON_WEEKDAYS:
        return CRON_WEEKDAYS.index(token)
    if token.isdigit() and 0 <= int(token) <= 7:
        return int(token)
    raise ValueError(f"invalid day of week {token!r}")


def translate_day_of_week(field: str) -> str:
    """Rewrite a standard cron day-of-week field as APScheduler weekday names.

    APScheduler numbers weekdays from Monday = 0; cron numbers them from
    Sunday = 0 (7 is Sunday too). Names are unambiguous in both.
    """
    if field == "*":
        return field

    days = set()
    for item in field.split(","):
        span, _, step_text = item.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValueError(f"invalid step in day of week {item!r}")
            step = int(step_text)

        if span == "*":
            first, last = 0, 6
        elif "-" in span:
            start, _, end = span.partition("-")
            first, last = _weekday_number(start), _weekday_number(end)
            if first > last:
                raise ValueError(f"invalid day of week range {span!r}")
        else:
            first = _weekday_number(span)
            last = 6 if step_text else first

        days.update(day % 7 for day in range(first, last + 1, step))

    return ",".join(CRON_WEEKDAYS[day] for day in sorted(days))


def parse_cron_schedule(expression: str, timezone=None) -> BaseTrigger:
    """Build a trigger from a standard five-field cron expression.

    When both day-of-month and day-of-week are restricted, the schedule fires
    on days matching either field, as cron does.

    Raises:
        ConfigurationError: If the expression is not valid
    """
    try:
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"expected 5 fields, got {len(fields)}")
        minute, hour, day, month, day_of_week = fields
        day_of_week = translate_day_of_week(day_of_week)

        def cron(day, day_of_week):
            return CronTrigger(minute=minute, hour=hour, day=day, month=month,
                               day_of_week=day_of_week, timezone=timezone)

        if day.startswith("*") or fields[4].startswith("*"):
            return cron(day, day_of_week)
        return OrTrigger([cron(day, "*"), cron("*", day_of_week)])
    except (ValueError, TypeError, AttributeError) as e:
        raise ConfigurationError(f"Invalid cron schedule {expression!r}: {e}") from e


class BurstScheduler:
    """Runs bursts of probe rounds on a cron schedule."""

    def __init__(self, registry: TargetRegistry, prober: Prober, store: StatisticsStore,
                 cron_schedule: str = "* * * * *", ping_interval: float = 10.0,
                 burst_duration: float = 60.0, timezone=None):
        """Initialize the scheduler.

        Args:
            registry: Targets probed in every round
            prober: Prober issuing the requests
            store: Store receiving every outcome
            cron_schedule: Five-field cron expression for burst starts
            ping_interval: Seconds between rounds inside a burst
            burst_duration: Seconds a burst lasts
            timezone: Timezone for the cron schedule (local time if None)

        Raises:
            ConfigurationError: If the schedule or timings are invalid
        """
        if not all(math.isfinite(v) for v in (ping_interval, burst_duration)):
            raise ConfigurationError("ping_interval and burst_duration must be finite numbers")
        if ping_interval <= 0 or burst_duration <= 0:
            raise ConfigurationError("ping_interval and burst_duration must be positive")
        if ping_interval > burst_duration:
            raise ConfigurationError("ping_interval must not exceed burst_duration")

        self.registry = registry
        self.prober = prober
        self.store = store
        self.cron_schedule = cron_schedule
        self.ping_interval = ping_interval
        self.burst_duration = burst_duration
        self._trigger = parse_cron_schedule(cron_schedule, timezone=timezone)

        self.state = BurstState.IDLE
        self.bursts_started = 0
        self.rounds_started = 0

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._burst_task: Optional[asyncio.Task] = None
        self._burst_entered = 0.0
        self._ticks_fired = 0
        self._round_tasks: Set[asyncio.Task] = set()

    @property
    def rounds_per_burst(self) -> int:
        # Tolerance so 0.2 / 0.05 counts as 4 rounds despite float rounding
        return int(self.burst_duration / self.ping_interval + 1e-9)

    @property
    def in_flight_rounds(self) -> int:
        return len(self._round_tasks)

    def start(self) -> None:
        """Register the cron schedule and start it. Must run inside the event loop."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self._scheduler.add_job(
            self._on_schedule,
            self._trigger,
            id="burst",
            coalesce=True,
            max_instances=1,
            misfire_grace_time=30,
        )
        self._scheduler.start()
        logger.info(f"Burst scheduler started (cron '{self.cron_schedule}', "
                    f"every {self.ping_interval:g}s for {self.burst_duration:g}s)")

    async def _on_schedule(self) -> None:
        # Coroutine so APScheduler runs it on the loop rather than a worker thread
        self.trigger_burst()

    def trigger_burst(self) -> asyncio.Task:
        """Enter BURST_RUNNING, restarting the window if a burst is active."""
        if self._burst_task is not None and not self._burst_task.done():
            logger.info("Burst already running; restarting burst window")
            self._fire_due_ticks()
            self._burst_task.cancel()

        self.state = BurstState.BURST_RUNNING
        self.bursts_started += 1
        logger.info("[CRON] Starting high-frequency pings...")
        self._burst_entered = asyncio.get_running_loop().time()
        self._ticks_fired = 0
        task = asyncio.ensure_future(self._run_burst(self._burst_entered))
        self._burst_task = task
        return task

    def _fire_due_ticks(self) -> None:
        # With the default timings the final tick and the next cron firing coincide
        loop = asyncio.get_running_loop()
        slack = min(1.0, self.ping_interval / 4)
        elapsed = loop.time() + slack - self._burst_entered
        due = min(self.rounds_per_burst, int(elapsed / self.ping_interval + 1e-9))
        while self._ticks_fired < due:
            self._ticks_fired += 1
            self._spawn_round()

    async def _run_burst(self, entered: float) -> None:
        loop = asyncio.get_running_loop()
        deadline = entered + self.burst_duration
        try:
            for tick in range(1, self.rounds_per_burst + 1):
                await asyncio.sleep(max(0.0, entered + tick * self.ping_interval - loop.time()))
                if self._ticks_fired < tick:
                    self._ticks_fired = tick
                    self._spawn_round()
            await asyncio.sleep(max(0.0, deadline - loop.time()))
        finally:
            # A restart has already installed a newer burst task
            if asyncio.current_task() is self._burst_task:
                self.state = BurstState.IDLE
                self._burst_task = None
                logger.info("[CRON] Ping cycle finished")

    def _spawn_round(self) -> asyncio.Task:
        self.rounds_started += 1
        task = asyncio.ensure_future(self.run_round())
        self._round_tasks.add(task)
        task.add_done_callback(self._round_tasks.discard)
        return task

    async def run_round(self) -> List[ProbeOutcome]:
        """Probe every target concurrently, then record each outcome."""
        outcomes = await self.prober.probe_all(self.registry)
        for outcome in outcomes:
            self.store.record_outcome(outcome)
        succeeded = sum(1 for o in outcomes if o.succeeded)
        logger.debug(f"Probe round complete: {succeeded}/{len(outcomes)} succeeded")
        return outcomes

    def trigger_manual_round(self) -> asyncio.Task:
        """Start one probe round now without waiting for it."""
        logger.info("Manual ping triggered")
        return self._spawn_round()

    async def wait_idle(self) -> None:
        """Wait until the current burst window (if any) has ended."""
        while self._burst_task is not None:
            task = self._burst_task
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                # Restarted: wait for the replacement window instead
                if task.cancelled():
                    continue
                raise

    async def stop(self, drain: bool = True) -> None:
        """Stop scheduling new bursts.

        Args:
            drain: Wait for in-flight rounds to finish and record
        """
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        if self._burst_task is not None:
            task = self._burst_task
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            self._burst_task = None

        if drain and self._round_tasks:
            await asyncio.gather(*list(self._round_tasks), return_exceptions=True)
        elif self._round_tasks:
            for task in list(self._round_tasks):
                task.cancel()
            await asyncio.gather(*list(self._round_tasks), return_exceptions=True)

        self.state = BurstState.IDLE
        logger.info("Burst scheduler stopped")
