"""Pure transition function for the gate.

reduce() never performs I/O and never reads the clock itself; the store
passes `now` in. Side effects for each transition live in GateStore.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable

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
    NavigateToWeb,
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
from depthgate.gate.state import (
    ACTIVE_MODE,
    NOTIFICATION_COOLDOWN,
    GateState,
    NavigationInfo,
    NotificationInfo,
    NotificationStatus,
    Phase,
    PhaseKind,
    TrackingInfo,
    normalize_payload,
)


@dataclass(frozen=True)
class _Context:
    now: datetime
    cooldown: timedelta


_Handler = Callable[[GateState, GateEvent, _Context], GateState]
_HANDLERS: dict[type[GateEvent], _Handler] = {}


def _handles(*event_types: type[GateEvent]):
    def register(fn: _Handler) -> _Handler:
        for event_type in event_types:
            _HANDLERS[event_type] = fn
        return fn

    return register


def reduce(
    state: GateState,
    event: GateEvent,
    *,
    now: datetime | None = None,
    cooldown: timedelta = NOTIFICATION_COOLDOWN,
) -> GateState:
    """Apply one event to the gate state.

    Args:
        state: Current state
        event: Event to apply
        now: Current time (UTC); defaults to the wall clock
        cooldown: Minimum gap between notification prompts

    Returns:
        The next state (the same object when the event changes nothing)

    Raises:
        TypeError: If the event type has no transition
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"No transition for event {type(event).__name__}")
    ctx = _Context(now=now or datetime.now(timezone.utc), cooldown=cooldown)
    return handler(state, event, ctx)


# --- Helpers ---


def _pause(state: GateState) -> GateState:
    """Move to PAUSED with local-content navigation."""
    if state.phase.is_terminal:
        return state
    return replace(
        state,
        phase=Phase.paused(),
        ui=replace(state.ui, navigate_main=True, show_notification_prompt=False),
    )


def _run(state: GateState, endpoint: str, ctx: _Context) -> GateState:
    """Move to RUNNING and either prompt for notifications or go to the web view."""
    can_ask = state.config.notifications.can_ask(ctx.now, ctx.cooldown)
    ui = replace(
        state.ui,
        show_notification_prompt=can_ask,
        navigate_web=not can_ask,
        navigate_main=False,
    )
    return replace(state, phase=Phase.running(endpoint), ui=ui)


def _answer_notifications(
    state: GateState, status: NotificationStatus, ctx: _Context
) -> GateState:
    config = replace(
        state.config,
        notifications=NotificationInfo(status=status, last_request=ctx.now),
    )
    # The web destination is already resolved; the answer never blocks it.
    in_web_flow = state.phase.kind == PhaseKind.RUNNING
    ui = replace(
        state.ui,
        show_notification_prompt=False,
        navigate_web=state.ui.navigate_web or in_web_flow,
    )
    return replace(state, config=config, ui=ui)


# --- Lifecycle ---


@_handles(Initialize)
def _on_initialize(state, event, ctx):
    if state.phase.kind != PhaseKind.START:
        return state
    return replace(state, phase=Phase.loading())


@_handles(Timeout)
def _on_timeout(state, event, ctx):
    return _pause(state)


@_handles(ConfigLoaded)
def _on_config_loaded(state, event: ConfigLoaded, ctx):
    if event.notifications_approved:
        status = NotificationStatus.APPROVED
    elif event.notifications_rejected:
        status = NotificationStatus.REJECTED
    else:
        status = NotificationStatus.NOT_ASKED

    config = replace(
        state.config,
        endpoint=state.config.endpoint or event.endpoint,
        mode=event.mode,
        first_launch=state.config.first_launch and event.first_launch,
        tracking=TrackingInfo(event.tracking),
        navigation=NavigationInfo(event.navigation),
        notifications=NotificationInfo(
            status=status, last_request=event.notifications_last_request
        ),
    )
    return replace(state, config=config)


# --- Attribution ---


@_handles(TrackingReceived, FetchTrackingSucceeded)
def _on_tracking(state, event, ctx):
    tracking = TrackingInfo(normalize_payload(event.data))
    return replace(state, config=replace(state.config, tracking=tracking))


@_handles(NavigationReceived)
def _on_navigation(state, event: NavigationReceived, ctx):
    navigation = NavigationInfo(normalize_payload(event.data))
    return replace(state, config=replace(state.config, navigation=navigation))


# --- Network ---


@_handles(NetworkStatusChanged)
def _on_network(state, event: NetworkStatusChanged, ctx):
    return replace(state, ui=replace(state.ui, show_offline_view=not event.connected))


# --- Validation ---


@_handles(ValidationStarted)
def _on_validation_started(state, event, ctx):
    if state.phase.is_terminal:
        return state
    return replace(state, phase=Phase.checking())


@_handles(ValidationSucceeded)
def _on_validation_succeeded(state, event, ctx):
    if state.phase.is_terminal:
        return state
    return replace(state, phase=Phase.approved())


@_handles(ValidationFailed, FetchTrackingFailed)
def _on_flow_failed(state, event, ctx):
    return _pause(state)


# --- Endpoint resolution ---


@_handles(FetchTrackingStarted, FetchEndpointStarted, NotificationPermissionRequested)
def _on_no_change(state, event, ctx):
    return state


@_handles(FetchEndpointSucceeded)
def _on_endpoint_resolved(state, event: FetchEndpointSucceeded, ctx):
    if state.phase.is_terminal:
        return state
    # A fresh resolution replaces the saved endpoint; once locked, nothing does.
    config = replace(
        state.config,
        endpoint=event.endpoint,
        mode=ACTIVE_MODE,
        first_launch=False,
    )
    return _run(replace(state, config=config), event.endpoint, ctx)


@_handles(FetchEndpointFailed)
def _on_endpoint_failed(state, event, ctx):
    if state.phase.is_terminal:
        return state
    saved = state.config.endpoint
    if saved:
        return _run(state, saved, ctx)
    return _pause(state)


@_handles(EndpointAdopted)
def _on_endpoint_adopted(state, event: EndpointAdopted, ctx):
    if state.phase.is_terminal:
        return state
    return _run(state, event.endpoint, ctx)


# --- Notifications ---


@_handles(NotificationPermissionGranted)
def _on_granted(state, event, ctx):
    return _answer_notifications(state, NotificationStatus.APPROVED, ctx)


@_handles(NotificationPermissionDenied)
def _on_denied(state, event, ctx):
    return _answer_notifications(state, NotificationStatus.REJECTED, ctx)


@_handles(NotificationPromptDismissed)
def _on_dismissed(state, event, ctx):
    return _answer_notifications(state, NotificationStatus.NOT_ASKED, ctx)


# --- Navigation ---


@_handles(NavigateToMain)
def _on_navigate_main(state, event, ctx):
    return _pause(state)


@_handles(NavigateToWeb)
def _on_navigate_web(state, event, ctx):
    if state.phase.kind != PhaseKind.RUNNING:
        return state
    return replace(state, ui=replace(state.ui, navigate_web=True))
