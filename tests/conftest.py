import asyncio
import socket
from collections import Counter

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer


class FakeBackend:
    """Local HTTP server whose behaviour is selected by the first path segment.

    /ok/...        200
    /down/...      503
    /slow/...      blocks until the test finishes
    /redirect/...  302 to /ok
    """

    def __init__(self, server: TestServer, hits: Counter, release: asyncio.Event):
        self.server = server
        self.hits = hits
        self.release = release

    def base(self, mode: str) -> str:
        return f"http://{self.server.host}:{self.server.port}/{mode}"


@pytest_asyncio.fixture
async def backend():
    release = asyncio.Event()
    hits: Counter = Counter()

    async def handler(request: web.Request) -> web.Response:
        mode = request.match_info["mode"]
        hits[mode] += 1
        if mode == "ok":
            return web.json_response({"status": "ok"})
        if mode == "down":
            return web.Response(status=503, text="unavailable")
        if mode == "slow":
            await release.wait()
            return web.Response(text="too late")
        if mode == "redirect":
            raise web.HTTPFound("/ok/api/health")
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/{mode}/api/health", handler)
    server = TestServer(app, host="127.0.0.1")
    await server.start_server()

    yield FakeBackend(server, hits, release)

    release.set()
    await server.close()


@pytest.fixture
def refused_url():
    """Base URL of a local port with nothing listening."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    return f"http://127.0.0.1:{port}"
