"""Gate store: serialized dispatch plus the effect runner.

All state changes go through dispatch(), which runs on the event loop
thread: the pure reducer computes the next state, subscribers are told,
then effects for the event are started as asyncio tasks. Effect tasks
never touch state; they report back by dispatching events.

Once a terminal URL is adopted the store locks: the decision timer is
cancelled, Timeout and NetworkStatusChanged are dropped, and results of
remote calls still in flight are discarded. A gate that already reached
PAUSED also discards late remote results, so the first terminal decision
wins.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Coroutine

from depthgate.gate.backend import BackendError
from depthgate.gate.events import (
    ConfigLoaded,
    EndpointAdopted,
    FetchEndpointFailed,
    FetchEndpointStarted,
    FetchEndpointSucceeded,
    FetchTrackingFailed,
    FetchTrackingStarted,
    FetchTrackingSucceeded,
    GateEvent,
    Initialize,
    NavigateToMain,
    NavigationReceived,
    NetworkStatusChanged,
    NotificationPermissionDenied,
    NotificationPermissionGranted,
    NotificationPermissionRequested,
    NotificationPromptDismissed,
    Timeout,
    TrackingReceived,
    ValidationFailed,
    ValidationStarted,
    ValidationSucceeded,
)
from depthgate.gate.persistence import NotificationRecord
from depthgate.gate.reducer import reduce
from depthgate.gate.state import ACTIVE_MODE, GateState, PhaseKind

if TYPE_CHECKING:
    from depthgate.config import Settings
    from depthgate.gate.backend import BackendClient
    from depthgate.gate.notifications import NotificationPermissionAdapter
    from depthgate.gate.persistence import GatePersistence
    from depthgate.gate.validator import RemoteValidator

logger = logging.getLogger(__name__)

_IGNORED_WHEN_LOCKED = (Timeout, NetworkStatusChanged)

Subscriber = Callable[[GateState], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GateStore:
    """Single owner of the gate state."""

    def __init__(
        self,
        *,
        settings: "Settings",
        persistence: "GatePersistence",
        validator: "RemoteValidator",
        backend: "BackendClient",
        permissions: "NotificationPermissionAdapter",
        device_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._settings = settings
        self._persistence = persistence
        self._validator = validator
        self._backend = backend
        self._permissions = permissions
        self._device_id = device_id
        self._clock = clock
        self._cooldown = timedelta(days=settings.notification_cooldown_days)

        self._state = GateState.initial()
        self._locked = False
        self._validation_requested = False
        self._timeout_task: asyncio.Task | None = None
        self._permission_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._subscribers: list[Subscriber] = []
        self._decided = asyncio.Event()

        self._load_config()

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def locked(self) -> bool:
        """True once a terminal URL has been adopted."""
        return self._locked

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call callback after every state change. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # --- Dispatch ---

    def dispatch(self, event: GateEvent) -> GateState:
        """Apply an event and start its effects. Must run on the loop thread."""
        if self._locked and isinstance(event, _IGNORED_WHEN_LOCKED):
            logger.debug(f"Gate locked, ignoring {event.event_type}")
            return self._state

        old_state = self._state
        new_state = reduce(old_state, event, now=self._clock(), cooldown=self._cooldown)
        self._state = new_state

        if new_state.phase != old_state.phase:
            logger.info(f"Gate phase {old_state.phase} -> {new_state.phase}")
        if new_state != old_state:
            self._notify(new_state)

        self._handle_effects(event, old_state, new_state)
        return new_state

    def _deliver(self, event: GateEvent) -> None:
        """Dispatch the result of a remote call unless the decision is already made."""
        if self._locked or self._state.phase.is_terminal:
            logger.info(f"Decision already made, discarding {event.event_type}")
            return
        self.dispatch(event)

    def _notify(self, state: GateState) -> None:
        if state.ui.decided:
            self._decided.set()
        for callback in list(self._subscribers):
            try:
                callback(state)
            except Exception:
                logger.exception("Gate subscriber failed")

    # --- Effects ---

    def _handle_effects(
        self, event: GateEvent, old_state: GateState, new_state: GateState
    ) -> None:
        persistence = self._persistence
        became_running = (
            new_state.phase.kind == PhaseKind.RUNNING
            and old_state.phase.kind != PhaseKind.RUNNING
        )

        if isinstance(event, Initialize):
            self._schedule_timeout()

        elif isinstance(event, TrackingReceived):
            persistence.save_tracking(new_state.config.tracking.data)
            if not self._validation_requested:
                self._validation_requested = True
                self._spawn(self._perform_validation(), "gate-validation")

        elif isinstance(event, NavigationReceived):
            persistence.save_navigation(new_state.config.navigation.data)

        elif isinstance(event, ValidationSucceeded):
            if new_state.phase.kind == PhaseKind.APPROVED:
                self._spawn(self._execute_flow(), "gate-flow")

        elif isinstance(event, FetchTrackingSucceeded):
            persistence.save_tracking(new_state.config.tracking.data)
            if not new_state.phase.is_terminal:
                self._spawn(self._request_endpoint(), "gate-fetch-endpoint")

        elif isinstance(event, FetchEndpointSucceeded):
            if became_running:
                persistence.save_endpoint(new_state.config.endpoint)
                persistence.save_mode(ACTIVE_MODE)
                persistence.mark_first_launch_done()
                self._lock(new_state.phase.endpoint)

        elif isinstance(event, FetchEndpointFailed):
            if became_running:
                logger.info("Endpoint resolution failed, reusing saved endpoint")
                self._lock(new_state.phase.endpoint)

        elif isinstance(event, EndpointAdopted):
            if became_running:
                if event.source == "staged":
                    persistence.clear_staged_url()
                self._lock(new_state.phase.endpoint)

        elif isinstance(event, NotificationPermissionRequested):
            if self._permission_task is None or self._permission_task.done():
                self._permission_task = self._spawn(
                    self._request_permission(), "gate-notification-permission"
                )

        elif isinstance(event, NotificationPermissionGranted):
            persistence.save_notifications(
                NotificationRecord(
                    approved=True,
                    last_request=new_state.config.notifications.last_request,
                )
            )
            self._permissions.register_for_remote()

        elif isinstance(event, NotificationPermissionDenied):
            persistence.save_notifications(
                NotificationRecord(
                    rejected=True,
                    last_request=new_state.config.notifications.last_request,
                )
            )

        elif isinstance(event, NotificationPromptDismissed):
            persistence.save_notifications(
                NotificationRecord(
                    last_request=new_state.config.notifications.last_request,
                )
            )

    def _spawn(self, coro: Coroutine, name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Gate task {task.get_name()} crashed: {exc!r}")

    def _lock(self, url: str | None) -> None:
        if self._locked:
            return
        self._locked = True
        if self._timeout_task is not None and not self._timeout_task.done():
            self._timeout_task.cancel()
        self._persistence.mark_attribution_completed()
        logger.info(f"Gate locked on {url}")

    def _load_config(self) -> None:
        loaded = self._persistence.load()
        self.dispatch(
            ConfigLoaded(
                endpoint=loaded.endpoint,
                mode=loaded.mode,
                first_launch=loaded.is_first_launch,
                tracking=loaded.tracking,
                navigation=loaded.navigation,
                notifications_approved=loaded.notifications.approved,
                notifications_rejected=loaded.notifications.rejected,
                notifications_last_request=loaded.notifications.last_request,
            )
        )

    def _device(self) -> str:
        if self._device_id is None:
            self._device_id = self._persistence.ensure_device_id()
        return self._device_id

    # --- Timers ---

    def _schedule_timeout(self) -> None:
        if self._timeout_task is not None:
            return
        self._timeout_task = self._spawn(self._run_timeout(), "gate-decision-timeout")

    async def _run_timeout(self) -> None:
        await asyncio.sleep(self._settings.decision_timeout_seconds)
        if self._locked:
            return
        logger.warning(
            f"No decision after {self._settings.decision_timeout_seconds}s, "
            "falling back to local content"
        )
        self.dispatch(Timeout())

    # --- Remote flow ---

    async def _perform_validation(self) -> None:
        self.dispatch(ValidationStarted())
        try:
            valid = await self._validator.validate()
        except Exception:
            logger.exception("Validator raised, treating as failure")
            valid = False
        self._deliver(ValidationSucceeded() if valid else ValidationFailed())

    async def _execute_flow(self) -> None:
        state = self._state
        staged = self._persistence.staged_url(
            now=self._clock().timestamp(),
            ttl=self._settings.staged_url_ttl_seconds,
        )
        if staged:
            logger.info("Adopting URL staged by a push notification")
            self._deliver(EndpointAdopted(endpoint=staged, source="staged"))
            return

        if not state.config.tracking.has_content:
            if state.config.endpoint:
                self._deliver(EndpointAdopted(endpoint=state.config.endpoint, source="saved"))
            else:
                self._deliver(NavigateToMain())
            return

        if state.config.first_launch and state.config.tracking.is_organic:
            await self._run_organic_flow()
            return

        await self._request_endpoint()

    async def _run_organic_flow(self) -> None:
        await asyncio.sleep(self._settings.organic_delay_seconds)
        if self._locked or self._state.phase.is_terminal:
            return

        self.dispatch(FetchTrackingStarted())
        try:
            fetched = await self._backend.fetch_tracking(self._device())
        except BackendError as e:
            logger.warning(f"Organic attribution fetch failed: {e}")
            self._deliver(FetchTrackingFailed())
            return
        except Exception:
            logger.exception("Organic attribution fetch crashed")
            self._deliver(FetchTrackingFailed())
            return

        merged = dict(fetched)
        for key, value in self._state.config.navigation.data.items():
            merged.setdefault(key, value)
        self._deliver(FetchTrackingSucceeded(data=merged))

    async def _request_endpoint(self) -> None:
        self.dispatch(FetchEndpointStarted())
        tracking = self._state.config.tracking.to_dict()
        try:
            endpoint = await self._backend.fetch_endpoint(
                tracking,
                device_id=self._device(),
                push_token=self._persistence.push_token(),
            )
        except BackendError as e:
            logger.warning(f"Endpoint resolution failed: {e}")
            self._deliver(FetchEndpointFailed())
            return
        except Exception:
            logger.exception("Endpoint resolution crashed")
            self._deliver(FetchEndpointFailed())
            return
        self._deliver(FetchEndpointSucceeded(endpoint=endpoint))

    async def _request_permission(self) -> None:
        try:
            granted = await self._permissions.request()
        except Exception as e:
            logger.warning(f"Notification permission request failed: {e}")
            granted = False
        if granted:
            self.dispatch(NotificationPermissionGranted())
        else:
            self.dispatch(NotificationPermissionDenied())

    # --- Waiting / shutdown ---

    async def wait_until_decided(self, timeout: float | None = None) -> GateState:
        """Wait until the view layer has something to act on.

        Raises:
            asyncio.TimeoutError: If nothing is decided within timeout
        """
        if not self._state.ui.decided:
            await asyncio.wait_for(self._decided.wait(), timeout=timeout)
        return self._state

    async def settle_permission(self) -> GateState:
        """Wait for an outstanding notification permission request to finish."""
        task = self._permission_task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._state

    async def close(self) -> None:
        """Cancel every outstanding effect task."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._timeout_task = None
        self._permission_task = None
