"""Statistics Store for probe outcomes.

The store is the single owner of per-target and global ping counters. All
mutation goes through ``record_outcome`` and all reads through ``snapshot``,
both serialized by one lock, so no reader can observe a half-applied update.

Author: PingBurst Team
Version: 1.0.0
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from ..errors import UnknownTargetError
from ..health.prober import ProbeOutcome, ProbeStatus


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp as ISO-8601 UTC with milliseconds and a Z suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class TargetStatistics:
    """Running counters for one target."""
    total_pings: int = 0
    successful_pings: int = 0
    failed_pings: int = 0
    last_ping_time: Optional[datetime] = None
    last_ping_status: Optional[ProbeStatus] = None
    last_response_time: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPings": self.total_pings,
            "successfulPings": self.successful_pings,
            "failedPings": self.failed_pings,
            "lastPingTime": format_timestamp(self.last_ping_time),
            "lastPingStatus": self.last_ping_status.value if self.last_ping_status else None,
            "lastResponseTime": self.last_response_time,
        }


@dataclass
class GlobalStatistics:
    """Counters summed over every target."""
    total_pings: int = 0
    successful_pings: int = 0
    failed_pings: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalPings": self.total_pings,
            "successfulPings": self.successful_pings,
            "failedPings": self.failed_pings,
        }


@dataclass(frozen=True)
class StatisticsSnapshot:
    """Point-in-time, internally consistent copy of all statistics."""
    servers: Mapping[str, TargetStatistics]
    global_stats: GlobalStatistics
    start_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "servers": {identity: stats.to_dict() for identity, stats in self.servers.items()},
            "globalStats": self.global_stats.to_dict(),
            "startTime": format_timestamp(self.start_time),
        }


class StatisticsStore:
    """Thread-safe store of per-target and global ping statistics."""

    def __init__(self, identities: Iterable[str], start_time: Optional[datetime] = None):
        """Initialize zeroed statistics.

        Args:
            identities: Target identities to track, in display order
            start_time: Service start time (defaults to now)
        """
        self._servers: Dict[str, TargetStatistics] = {}
        for identity in identities:
            self._servers.setdefault(identity, TargetStatistics())
        self._global = GlobalStatistics()
        self._start_time = start_time or datetime.now(timezone.utc)
        self._lock = threading.Lock()

    @property
    def start_time(self) -> datetime:
        return self._start_time

    def record_outcome(self, outcome: ProbeOutcome) -> None:
        """Apply one probe outcome to its target and to the global counters.

        Raises:
            UnknownTargetError: If the outcome's target is not tracked
        """
        with self._lock:
            stats = self._servers.get(outcome.target)
            if stats is None:
                raise UnknownTargetError(outcome.target)

            stats.total_pings += 1
            self._global.total_pings += 1
            if outcome.succeeded:
                stats.successful_pings += 1
                self._global.successful_pings += 1
            else:
                stats.failed_pings += 1
                self._global.failed_pings += 1

            stats.last_ping_time = outcome.timestamp
            stats.last_ping_status = outcome.status
            stats.last_response_time = outcome.response_time_ms

    def snapshot(self) -> StatisticsSnapshot:
        """Copy all statistics under the lock."""
        with self._lock:
            return StatisticsSnapshot(
                servers={identity: replace(stats) for identity, stats in self._servers.items()},
                global_stats=replace(self._global),
                start_time=self._start_time,
            )

    def uptime_seconds(self, now: Optional[datetime] = None) -> int:
        """Whole seconds elapsed since the service started."""
        now = now or datetime.now(timezone.utc)
        return max(0, int((now - self._start_time).total_seconds()))
