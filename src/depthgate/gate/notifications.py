"""Notification permission adapters.

The store asks the adapter for permission when the view layer dispatches
NotificationPermissionRequested, and folds the answer back in as
Granted/Denied events.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class NotificationPermissionAdapter(Protocol):
    async def request(self) -> bool:
        """Ask for permission; True if granted."""
        ...

    def register_for_remote(self) -> None:
        """Called once permission has been granted."""
        ...


class StaticPermissionAdapter:
    """Answers every request the same way. Used by the CLI."""

    def __init__(self, granted: bool):
        self.granted = granted
        self.requests = 0
        self.registered = False

    async def request(self) -> bool:
        self.requests += 1
        return self.granted

    def register_for_remote(self) -> None:
        self.registered = True


class CallbackPermissionAdapter:
    """Waits for an external answer (the view layer or the local API).

    request() parks on a future; grant() / deny() resolve it. An answer
    given before anyone asked is kept for the next request.
    """

    def __init__(self, on_registered: Callable[[], None] | None = None):
        self._pending: asyncio.Future[bool] | None = None
        self._early_answer: bool | None = None
        self._on_registered = on_registered

    @property
    def is_waiting(self) -> bool:
        return self._pending is not None and not self._pending.done()

    async def request(self) -> bool:
        if self._early_answer is not None:
            answer, self._early_answer = self._early_answer, None
            return answer

        self._pending = asyncio.get_running_loop().create_future()
        try:
            return await self._pending
        finally:
            self._pending = None

    def grant(self) -> None:
        self._answer(True)

    def deny(self) -> None:
        self._answer(False)

    def _answer(self, granted: bool) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_result(granted)
        else:
            self._early_answer = granted

    def register_for_remote(self) -> None:
        logger.info("Registering for remote notifications")
        if self._on_registered is not None:
            self._on_registered()
