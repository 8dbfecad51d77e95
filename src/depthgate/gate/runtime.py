"""Wiring of one gate run: persistence, collector, push bridge, store."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from depthgate.config import Settings
from depthgate.gate.attribution import AttributionCollector
from depthgate.gate.backend import BackendClient
from depthgate.gate.events import (
    Initialize,
    NavigationReceived,
    NetworkStatusChanged,
    TrackingReceived,
)
from depthgate.gate.network import NetworkMonitor
from depthgate.gate.notifications import (
    CallbackPermissionAdapter,
    NotificationPermissionAdapter,
)
from depthgate.gate.persistence import GatePersistence
from depthgate.gate.push import PushBridge
from depthgate.gate.store import GateStore, utcnow
from depthgate.gate.validator import RemoteValidator

logger = logging.getLogger(__name__)


class GateRuntime:
    """Owns every collaborator of a gate run.

    SDK callbacks and the view layer talk to `collector`, `push` and
    `store`; nothing else is public.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        persistence: GatePersistence | None = None,
        validator: RemoteValidator | None = None,
        backend: BackendClient | None = None,
        permissions: NotificationPermissionAdapter | None = None,
        network_monitor: NetworkMonitor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self._owns_persistence = persistence is None
        self.persistence = persistence or GatePersistence.open(settings.db_path)
        self.permissions = permissions or CallbackPermissionAdapter()

        self.store = GateStore(
            settings=settings,
            persistence=self.persistence,
            validator=validator or RemoteValidator(settings),
            backend=backend or BackendClient(settings),
            permissions=self.permissions,
            clock=clock,
        )
        self.collector = AttributionCollector(
            self.persistence,
            merge_window=settings.merge_window_seconds,
            on_tracking=self._on_tracking,
            on_navigation=self._on_navigation,
        )
        self.push = PushBridge(
            self.persistence,
            delivery_delay=settings.push_delivery_delay_seconds,
            clock=lambda: clock().timestamp(),
        )
        self.network = network_monitor
        if self.network is not None:
            self.network.on_change = self._on_network_change
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Begin the launch decision. Must run inside the event loop."""
        if self._started:
            logger.warning("Gate runtime already started")
            return
        self._started = True
        self.store.dispatch(Initialize())
        if self.network is not None:
            self.network.start()

    async def close(self) -> None:
        self.collector.close()
        self.push.close()
        if self.network is not None:
            await self.network.stop()
        await self.store.close()
        if self._owns_persistence:
            self.persistence.close()

    def _on_tracking(self, merged: dict[str, Any]) -> None:
        self.store.dispatch(TrackingReceived(data=merged))

    def _on_navigation(self, payload: dict[str, Any]) -> None:
        self.store.dispatch(NavigationReceived(data=payload))

    def _on_network_change(self, connected: bool) -> None:
        self.store.dispatch(NetworkStatusChanged(connected=connected))
