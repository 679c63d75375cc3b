"""Prober: single HTTP health-check requests against backend targets.

Issues one GET per target with a bounded wait and classifies the result.
Every failure path resolves to a ``ProbeOutcome``; nothing is raised to the
caller, so one misbehaving backend cannot abort probing of the others.

Author: PingBurst Team
Version: 1.0.0
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import aiohttp

from ..core.targets import Target

logger = logging.getLogger(__name__)


class ProbeStatus(Enum):
    """Classification of a probe attempt."""
    SUCCESS = "success"  # 2xx response
    FAILED = "failed"  # Any other response code
    ERROR = "error"  # Transport-level failure
    TIMEOUT = "timeout"  # No response within the request timeout


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one probe attempt."""
    target: str
    status: ProbeStatus
    response_time_ms: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ProbeStatus.SUCCESS


def classify_status_code(status_code: int) -> ProbeStatus:
    if 200 <= status_code < 300:
        return ProbeStatus.SUCCESS
    return ProbeStatus.FAILED


class Prober:
    """Issues health-check requests and classifies their outcomes."""

    def __init__(self, timeout: float = 7.0, verify_tls: bool = True,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize the prober.

        Args:
            timeout: Seconds to wait for a complete response
            verify_tls: Verify certificates of https targets
            session: Optional externally owned client session
        """
        if not math.isfinite(timeout) or timeout <= 0:
            raise ValueError("timeout must be a positive finite number")
        self.timeout = timeout
        self.verify_tls = verify_tls
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def _ssl_for(self, target: Target):
        """TLS setting for a target, chosen from its address scheme."""
        if not target.is_secure:
            return False
        return bool(self.verify_tls)

    async def _fetch(self, target: Target, started: float) -> Tuple[int, int]:
        """Send the request and drain the body.

        Returns:
            (status code, elapsed milliseconds at response headers)
        """
        session = self._get_session()
        async with session.get(target.url, allow_redirects=False,
                               ssl=self._ssl_for(target)) as response:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            await response.read()
            return response.status, elapsed_ms

    async def probe(self, target: Target) -> ProbeOutcome:
        """Probe a single target.

        Args:
            target: Target to probe

        Returns:
            Classified probe outcome
        """
        started = time.perf_counter()
        request = asyncio.ensure_future(self._fetch(target, started))

        try:
            done, _ = await asyncio.wait({request}, timeout=self.timeout)
        except asyncio.CancelledError:
            request.cancel()
            raise

        if not done:
            # Abort the in-flight request so its connection is released
            request.cancel()
            try:
                await request
            except asyncio.CancelledError:
                pass
            except Exception:  # raced to completion while being cancelled
                logger.debug(f"Request to {target.url} failed while being aborted")
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            outcome = ProbeOutcome(
                target=target.identity,
                status=ProbeStatus.TIMEOUT,
                response_time_ms=elapsed_ms,
                error=f"No response within {self.timeout:g}s",
            )
            logger.info(f"Ping {target.url}: timeout after {elapsed_ms}ms")
            return outcome

        try:
            status_code, elapsed_ms = request.result()
        except (aiohttp.ClientError, OSError) as e:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.info(f"Ping {target.url}: error ({e.__class__.__name__}: {e})")
            return ProbeOutcome(
                target=target.identity,
                status=ProbeStatus.ERROR,
                response_time_ms=elapsed_ms,
                error=str(e) or e.__class__.__name__,
            )
        except Exception as e:
            elapsed_ms = int((time.perf_counter() - started) * 1000)
            logger.exception(f"Unexpected error probing {target.url}")
            return ProbeOutcome(
                target=target.identity,
                status=ProbeStatus.ERROR,
                response_time_ms=elapsed_ms,
                error=str(e) or e.__class__.__name__,
            )

        status = classify_status_code(status_code)
        if status is ProbeStatus.SUCCESS:
            logger.debug(f"Ping {target.url}: {status_code} in {elapsed_ms}ms")
        else:
            logger.info(f"Ping {target.url}: failed with status {status_code}")
        return ProbeOutcome(
            target=target.identity,
            status=status,
            response_time_ms=elapsed_ms,
            status_code=status_code,
        )

    async def probe_all(self, targets: Iterable[Target]) -> List[ProbeOutcome]:
        """Probe all targets concurrently; outcomes follow target order."""
        return list(await asyncio.gather(*(self.probe(t) for t in targets)))

    async def close(self) -> None:
        """Close the client session if this prober created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
