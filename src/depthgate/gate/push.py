"""Inbound push payload handling.

A notification may carry a target URL. The bridge stages it in the
persistence gateway so the gate can adopt it instead of resolving an
endpoint again, and hands it to the renderer after a short delay.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Mapping

if TYPE_CHECKING:
    from depthgate.gate.persistence import GatePersistence

logger = logging.getLogger(__name__)

# Checked in order; first string hit wins.
URL_PATHS: tuple[tuple[str, ...], ...] = (
    ("url",),
    ("data", "url"),
    ("aps", "data", "url"),
    ("custom", "target_url"),
)


def extract_url(payload: Mapping[str, Any]) -> str | None:
    """Find a target URL in a push payload."""
    for path in URL_PATHS:
        node: Any = payload
        for part in path:
            if not isinstance(node, Mapping):
                node = None
                break
            node = node.get(part)
        if isinstance(node, str) and node:
            return node
    return None


class PushBridge:
    """Stages push URLs and records the push token."""

    def __init__(
        self,
        persistence: "GatePersistence",
        *,
        delivery_delay: float = 2.5,
        on_load_url: Callable[[str], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._persistence = persistence
        self._delivery_delay = delivery_delay
        self.on_load_url = on_load_url
        self._clock = clock
        self._deliveries: set[asyncio.Task] = set()

    def process(self, payload: Mapping[str, Any]) -> str | None:
        """Stage the URL in a push payload. Returns the URL, or None if absent."""
        url = extract_url(payload)
        if url is None:
            logger.debug("Push payload carries no URL")
            return None

        self._persistence.stage_url(url, at=self._clock())
        logger.info("Staged URL from push payload")

        if self.on_load_url is not None:
            task = asyncio.get_running_loop().create_task(
                self._deliver(url), name="push-url-delivery"
            )
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)
        return url

    def register_token(self, token: str) -> None:
        """Remember the push token sent along with endpoint resolution."""
        if token:
            self._persistence.save_push_token(token)

    def close(self) -> None:
        for task in list(self._deliveries):
            task.cancel()
        self._deliveries.clear()

    async def _deliver(self, url: str) -> None:
        await asyncio.sleep(self._delivery_delay)
        if self.on_load_url is not None:
            self.on_load_url(url)
