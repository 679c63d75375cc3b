import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from pingburst.core.scheduler import (
    BurstScheduler, BurstState, parse_cron_schedule, translate_day_of_week,
)
from pingburst.core.targets import TargetRegistry
from pingburst.errors import ConfigurationError
from pingburst.health.prober import ProbeOutcome, ProbeStatus
from pingburst.metrics.statistics import StatisticsStore

URLS = ["http://a.test", "http://b.test", "http://c.test"]


class FakeProber:
    """Returns canned outcomes after an optional delay or gate."""

    def __init__(self, statuses: Optional[Dict[str, ProbeStatus]] = None,
                 delay: float = 0.0, gate: Optional[asyncio.Event] = None):
        self.statuses = statuses or {}
        self.delay = delay
        self.gate = gate
        self.rounds = 0

    async def probe_all(self, targets) -> List[ProbeOutcome]:
        self.rounds += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        return [
            ProbeOutcome(target=t.identity,
                         status=self.statuses.get(t.identity, ProbeStatus.SUCCESS),
                         response_time_ms=5)
            for t in targets
        ]


def make_scheduler(prober, interval=0.05, duration=0.2, cron="* * * * *", urls=URLS):
    registry = TargetRegistry.from_urls(urls, "/api/health")
    store = StatisticsStore(registry.identities())
    scheduler = BurstScheduler(registry, prober, store, cron_schedule=cron,
                               ping_interval=interval, burst_duration=duration)
    return scheduler, store


def test_invalid_cron_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        parse_cron_schedule("not a cron")
    with pytest.raises(ConfigurationError):
        parse_cron_schedule("61 * * * *")
    with pytest.raises(ConfigurationError):
        make_scheduler(FakeProber(), cron="* * * *")


# Monday
MONDAY = datetime(2026, 10, 19, tzinfo=timezone.utc)


def fire_times(expression, count, start=MONDAY):
    trigger = parse_cron_schedule(expression, timezone="UTC")
    times, previous, now = [], None, start
    for _ in range(count):
        previous = trigger.get_next_fire_time(previous, now)
        times.append(previous)
        now = previous + timedelta(seconds=1)
    return times


@pytest.mark.parametrize("expression", ["0 0 * * 0", "0 0 * * 7", "0 0 * * sun"])
def test_sunday_is_zero_or_seven(expression):
    assert fire_times(expression, 2) == [
        datetime(2026, 10, 25, tzinfo=timezone.utc),
        datetime(2026, 11, 1, tzinfo=timezone.utc),
    ]


def test_weekday_range_is_monday_to_friday():
    times = fire_times("30 9 * * 1-5", 7)
    assert [t.strftime("%a") for t in times] == ["Mon", "Tue", "Wed", "Thu", "Fri", "Mon", "Tue"]
    assert times[0] == datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def test_day_of_month_or_day_of_week():
    # The 1st of the month, or any Friday
    times = fire_times("0 12 1 * 5", 3, start=datetime(2026, 10, 24, tzinfo=timezone.utc))
    assert [t.date().isoformat() for t in times] == ["2026-10-30", "2026-11-01", "2026-11-06"]


@pytest.mark.parametrize("field,expected", [
    ("*", "*"),
    ("0", "sun"),
    ("7", "sun"),
    ("0,7", "sun"),
    ("1-5", "mon,tue,wed,thu,fri"),
    ("5-7", "sun,fri,sat"),
    ("*/2", "sun,tue,thu,sat"),
    ("1-5/2", "mon,wed,fri"),
    ("SAT,sun", "sun,sat"),
])
def test_translate_day_of_week(field, expected):
    assert translate_day_of_week(field) == expected


@pytest.mark.parametrize("expression", ["0 0 * * 8", "0 0 * * 5-1", "0 0 * * */0", "0 0 * * funday"])
def test_invalid_day_of_week(expression):
    with pytest.raises(ConfigurationError, match="cron"):
        parse_cron_schedule(expression)


def test_interval_longer_than_burst_is_rejected():
    with pytest.raises(ConfigurationError):
        make_scheduler(FakeProber(), interval=5, duration=1)
    with pytest.raises(ConfigurationError):
        make_scheduler(FakeProber(), interval=0, duration=1)


@pytest.mark.parametrize("interval,duration", [
    (float("nan"), 60),
    (10, float("nan")),
    (10, float("inf")),
    (float("inf"), float("inf")),
])
def test_non_finite_timings_are_rejected(interval, duration):
    with pytest.raises(ConfigurationError, match="finite"):
        make_scheduler(FakeProber(), interval=interval, duration=duration)


def test_rounds_per_burst_matches_default_timings():
    scheduler, _ = make_scheduler(FakeProber(), interval=10, duration=60)
    assert scheduler.rounds_per_burst == 6
    assert scheduler.state is BurstState.IDLE


@pytest.mark.asyncio
async def test_run_round_records_one_outcome_per_target():
    prober = FakeProber({"http://b.test": ProbeStatus.TIMEOUT})
    scheduler, store = make_scheduler(prober)

    outcomes = await scheduler.run_round()

    assert len(outcomes) == 3
    snapshot = store.snapshot()
    assert snapshot.servers["http://a.test"].successful_pings == 1
    assert snapshot.servers["http://b.test"].failed_pings == 1
    assert snapshot.servers["http://b.test"].last_ping_status is ProbeStatus.TIMEOUT
    assert snapshot.servers["http://c.test"].successful_pings == 1
    assert snapshot.global_stats.total_pings == 3


@pytest.mark.asyncio
async def test_burst_runs_fixed_rounds_then_returns_to_idle():
    prober = FakeProber()
    scheduler, store = make_scheduler(prober, interval=0.05, duration=0.2)

    scheduler.trigger_burst()
    assert scheduler.state is BurstState.BURST_RUNNING

    await asyncio.wait_for(scheduler.wait_idle(), timeout=2)
    assert scheduler.state is BurstState.IDLE
    await scheduler.stop(drain=True)

    assert scheduler.rounds_started == 4
    assert store.snapshot().global_stats.total_pings == 4 * len(URLS)


@pytest.mark.asyncio
async def test_first_round_fires_after_one_interval():
    prober = FakeProber()
    scheduler, _ = make_scheduler(prober, interval=0.2, duration=0.4)

    scheduler.trigger_burst()
    await asyncio.sleep(0.1)
    assert scheduler.rounds_started == 0
    await asyncio.sleep(0.15)
    assert scheduler.rounds_started == 1

    await scheduler.stop()


@pytest.mark.asyncio
async def test_in_flight_rounds_finish_after_burst_ends():
    prober = FakeProber(delay=0.3)
    scheduler, store = make_scheduler(prober, interval=0.05, duration=0.1)

    scheduler.trigger_burst()
    await asyncio.wait_for(scheduler.wait_idle(), timeout=2)

    assert scheduler.state is BurstState.IDLE
    assert scheduler.in_flight_rounds > 0
    assert store.snapshot().global_stats.total_pings == 0

    await scheduler.stop(drain=True)
    assert scheduler.in_flight_rounds == 0
    assert store.snapshot().global_stats.total_pings == 2 * len(URLS)


@pytest.mark.asyncio
async def test_retrigger_restarts_burst_window():
    prober = FakeProber()
    scheduler, store = make_scheduler(prober, interval=0.1, duration=0.4)

    first = scheduler.trigger_burst()
    await asyncio.sleep(0.15)
    assert scheduler.rounds_started == 1

    second = scheduler.trigger_burst()
    assert second is not first
    await asyncio.sleep(0)
    assert first.cancelled()
    assert scheduler.state is BurstState.BURST_RUNNING

    await asyncio.wait_for(scheduler.wait_idle(), timeout=2)
    await scheduler.stop(drain=True)

    # One round from the first window, a full window from the restart
    assert scheduler.bursts_started == 2
    assert scheduler.rounds_started == 5
    assert store.snapshot().global_stats.total_pings == 5 * len(URLS)


@pytest.mark.asyncio
async def test_manual_round_does_not_wait_or_change_state():
    gate = asyncio.Event()
    scheduler, store = make_scheduler(FakeProber(gate=gate))

    task = scheduler.trigger_manual_round()
    assert scheduler.state is BurstState.IDLE
    assert not task.done()
    await asyncio.sleep(0.01)
    assert store.snapshot().global_stats.total_pings == 0

    gate.set()
    await asyncio.wait_for(task, timeout=1)
    assert store.snapshot().global_stats.total_pings == len(URLS)
    assert scheduler.state is BurstState.IDLE


@pytest.mark.asyncio
async def test_concurrent_rounds_keep_counts_exact():
    scheduler, store = make_scheduler(FakeProber(delay=0.01))

    tasks = [scheduler.trigger_manual_round() for _ in range(10)]
    await asyncio.gather(*tasks)

    snapshot = store.snapshot()
    for url in URLS:
        assert snapshot.servers[url].total_pings == 10
    assert snapshot.global_stats.total_pings == 30


@pytest.mark.asyncio
async def test_start_registers_cron_job_and_schedule_fires_burst():
    scheduler, _ = make_scheduler(FakeProber(), interval=1, duration=2)
    scheduler.start()
    try:
        jobs = scheduler._scheduler.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].next_run_time is not None

        await scheduler._on_schedule()
        assert scheduler.state is BurstState.BURST_RUNNING
    finally:
        await scheduler.stop(drain=False)

    assert scheduler.state is BurstState.IDLE


@pytest.mark.asyncio
async def test_restart_at_window_end_still_fires_final_round():
    scheduler, store = make_scheduler(FakeProber(), interval=0.1, duration=0.3)

    scheduler.trigger_burst()
    await asyncio.sleep(0.29)
    assert scheduler.rounds_started in (2, 3)

    # The next firing lands on the final tick
    scheduler.trigger_burst()
    assert scheduler.rounds_started == 3

    await asyncio.wait_for(scheduler.wait_idle(), timeout=2)
    await scheduler.stop(drain=True)

    assert scheduler.rounds_started == 6
    assert store.snapshot().global_stats.total_pings == 6 * len(URLS)
