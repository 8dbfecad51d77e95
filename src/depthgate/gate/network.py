"""Connectivity monitor.

Probes a lightweight URL on an interval and reports changes only.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

import httpx

logger = logging.getLogger(__name__)


class NetworkMonitor:
    """Background connectivity probe."""

    def __init__(
        self,
        probe_url: str,
        *,
        interval: float = 10.0,
        on_change: Callable[[bool], None] | None = None,
        client: httpx.AsyncClient | None = None,
        probe_timeout: float = 5.0,
    ):
        self._probe_url = probe_url
        self._interval = interval
        self.on_change = on_change
        self._client = client
        self._probe_timeout = probe_timeout
        self._connected: bool | None = None
        self._shutdown = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def connected(self) -> bool | None:
        """Last observed status, None before the first probe."""
        return self._connected

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Network monitor already started")
            return
        self._shutdown.clear()
        self._task = asyncio.get_running_loop().create_task(
            self._run_loop(), name="network-monitor"
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._shutdown.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def probe(self) -> bool:
        """One connectivity check. Any HTTP answer counts as connected."""
        try:
            if self._client is not None:
                await self._client.head(self._probe_url, timeout=self._probe_timeout)
            else:
                async with httpx.AsyncClient(timeout=self._probe_timeout) as client:
                    await client.head(self._probe_url)
            return True
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            return False

    async def check(self) -> bool:
        """Probe and report if the status changed."""
        connected = await self.probe()
        if connected != self._connected:
            self._connected = connected
            logger.info(f"Network {'available' if connected else 'lost'}")
            if self.on_change is not None:
                self.on_change(connected)
        return connected

    async def _run_loop(self) -> None:
        while not self._shutdown.is_set():
            await self.check()
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                continue
