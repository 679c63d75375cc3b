"""
PingBurst: async service entry point.
Wires the registry, store, prober, burst scheduler and status server, then
runs until SIGINT/SIGTERM.
"""
import asyncio
import logging
import signal
from typing import Optional

from .config import MonitorConfig
from .core.scheduler import BurstScheduler
from .core.targets import TargetRegistry
from .health.prober import Prober
from .metrics.statistics import StatisticsStore
from .metrics.status_server import StatusServer

logger = logging.getLogger(__name__)


class KeepAliveService:
    """Owns every component for the lifetime of the process."""

    def __init__(self, config: MonitorConfig):
        self.config = config
        self.registry = TargetRegistry.from_urls(config.backend_urls, config.ping_endpoint)
        self.store = StatisticsStore(self.registry.identities())
        self.prober = Prober(timeout=config.request_timeout, verify_tls=config.verify_tls)
        self.scheduler = BurstScheduler(
            self.registry,
            self.prober,
            self.store,
            cron_schedule=config.cron_schedule,
            ping_interval=config.ping_interval,
            burst_duration=config.burst_duration,
        )
        self.server = StatusServer(self.store, self.scheduler, host=config.host, port=config.port)

    async def start(self) -> None:
        await self.server.start()
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop(drain=True)
        await self.server.stop()
        await self.prober.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


async def run_service(config: MonitorConfig, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the service until the stop event is set or a signal arrives."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops; KeyboardInterrupt still stops asyncio.run
            pass

    async with KeepAliveService(config):
        await stop_event.wait()
        logger.info("Shutting down...")
