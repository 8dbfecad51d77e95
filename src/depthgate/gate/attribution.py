"""Attribution collector.

The attribution SDK delivers two independent callbacks: conversion data
(tracking) and a resolved deep link (navigation). Either may arrive first,
late or never. The collector buffers both and emits one merged tracking
record as soon as both are present, or merge_window seconds after the last
tracking payload if no deep link shows up.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

if TYPE_CHECKING:
    from depthgate.gate.persistence import GatePersistence

logger = logging.getLogger(__name__)

NAVIGATION_KEY_PREFIX = "deep_"
DEFAULT_MERGE_WINDOW_SECONDS = 2.5

PayloadCallback = Callable[[dict[str, Any]], None]


def merge_attribution(
    tracking: Mapping[str, Any],
    navigation: Mapping[str, Any],
) -> dict[str, Any]:
    """Merge navigation keys into tracking under the deep_ prefix.

    A prefixed key is only added when tracking does not already carry it.
    """
    result = dict(tracking)
    for key, value in navigation.items():
        prefixed = f"{NAVIGATION_KEY_PREFIX}{key}"
        if prefixed not in result:
            result[prefixed] = value
    return result


class AttributionCollector:
    """Buffers tracking and navigation payloads and emits merged tracking.

    Must be driven from a running event loop; the merge timer is an
    asyncio task.
    """

    def __init__(
        self,
        persistence: "GatePersistence",
        *,
        merge_window: float = DEFAULT_MERGE_WINDOW_SECONDS,
        on_tracking: PayloadCallback | None = None,
        on_navigation: PayloadCallback | None = None,
    ):
        self._persistence = persistence
        self._merge_window = merge_window
        self.on_tracking = on_tracking
        self.on_navigation = on_navigation
        self._tracking: dict[str, Any] = {}
        self._navigation: dict[str, Any] = {}
        self._merge_task: asyncio.Task | None = None

    @property
    def has_pending_merge(self) -> bool:
        return self._merge_task is not None and not self._merge_task.done()

    def receive_tracking(self, payload: Mapping[str, Any]) -> None:
        """Conversion data arrived from the SDK."""
        self._tracking = dict(payload)
        if self._navigation:
            self._cancel_merge()
            self._emit()
            return
        self._schedule_merge()

    def receive_tracking_failure(self, description: str) -> None:
        """The SDK failed to fetch conversion data; pass the error on as tracking."""
        self.receive_tracking({"error": True, "error_description": description})

    def receive_navigation(self, payload: Mapping[str, Any]) -> bool:
        """A deep link resolved. Returns False if the payload was refused."""
        if self._persistence.is_attribution_completed():
            logger.info("Attribution already completed, dropping deep link payload")
            return False

        self._navigation = dict(payload)
        if self.on_navigation is not None:
            self.on_navigation(dict(self._navigation))

        self._cancel_merge()
        if self._tracking:
            self._emit()
        return True

    def mark_completed(self) -> None:
        """Refuse every later deep link, across launches."""
        self._persistence.mark_attribution_completed()

    def close(self) -> None:
        self._cancel_merge()

    def _schedule_merge(self) -> None:
        self._cancel_merge()
        self._merge_task = asyncio.get_running_loop().create_task(
            self._merge_after_window(), name="attribution-merge"
        )

    def _cancel_merge(self) -> None:
        if self._merge_task is not None and not self._merge_task.done():
            self._merge_task.cancel()
        self._merge_task = None

    async def _merge_after_window(self) -> None:
        await asyncio.sleep(self._merge_window)
        self._merge_task = None
        logger.debug("Merge window elapsed without deep link, emitting tracking alone")
        self._emit()

    def _emit(self) -> None:
        merged = merge_attribution(self._tracking, self._navigation)
        if self.on_tracking is not None:
            self.on_tracking(merged)
