"""Status HTTP API for PingBurst.

Serves the statistics snapshot as JSON and exposes a manual trigger route:

    GET /, GET /health   service status and statistics
    GET /ping            start one probe round immediately (fire-and-forget)
    anything else        404 with an empty body
"""

import functools
import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from ..core.scheduler import BurstScheduler
from .statistics import StatisticsStore

logger = logging.getLogger(__name__)

_pretty_dumps = functools.partial(json.dumps, indent=2)


class StatusServer:
    """Async status API exposing statistics and a manual ping trigger."""

    def __init__(self, store: StatisticsStore, scheduler: BurstScheduler,
                 host: str = '0.0.0.0', port: int = 3001):
        """Initialize the status server.

        Args:
            store: Statistics read on every status request
            scheduler: Scheduler used for manual probe rounds
            host: Host address to bind (default: '0.0.0.0')
            port: Port number to bind (default: 3001)
        """
        self.store = store
        self.scheduler = scheduler
        self.host = host
        self.port = port
        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self._setup_routes()

    def _setup_routes(self):
        """Configure HTTP routes; the catch-all must be registered last."""
        self.app.router.add_get('/', self.handle_status, allow_head=False)
        self.app.router.add_get('/health', self.handle_status, allow_head=False)
        self.app.router.add_get('/ping', self.handle_manual_ping, allow_head=False)
        self.app.router.add_route('*', '/{tail:.*}', self.handle_not_found)

    def build_status(self) -> Dict[str, Any]:
        """Status document served on / and /health."""
        return {
            "status": "running",
            "servers": len(self.scheduler.registry),
            "stats": self.store.snapshot().to_dict(),
            "uptime": f"{self.store.uptime_seconds()}s",
        }

    async def handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.build_status(), dumps=_pretty_dumps)

    async def handle_manual_ping(self, request: web.Request) -> web.Response:
        """Start a probe round and acknowledge without waiting for it."""
        self.scheduler.trigger_manual_round()
        return web.json_response({"message": "Manual ping triggered"})

    async def handle_not_found(self, request: web.Request) -> web.Response:
        return web.Response(status=404)

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port (useful when bound to port 0)."""
        if self.runner is None or not self.runner.addresses:
            return None
        return self.runner.addresses[0][1]

    async def start(self):
        """Start serving on host:port."""
        try:
            self.runner = web.AppRunner(self.app, access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Health server running on http://{self.host}:{self.bound_port or self.port}")

        except Exception as e:
            logger.error(f"Failed to start status server: {e}")
            raise

    async def stop(self):
        """Stop the server and release its sockets."""
        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        logger.info("Status server stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
