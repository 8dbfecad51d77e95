"""FastAPI routes for the local gate API.

SDK callbacks, push payloads and view-layer answers arrive here and are
forwarded to the running gate.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from depthgate.engine.models import (
    EventAccepted,
    GateStatus,
    NetworkUpdate,
    PushAccepted,
    PushTokenUpdate,
    TrackingFailure,
)
from depthgate.engine.state import get_engine_state
from depthgate.gate.events import (
    NetworkStatusChanged,
    NotificationPermissionRequested,
    NotificationPromptDismissed,
)
from depthgate.gate.notifications import CallbackPermissionAdapter
from depthgate.gate.runtime import GateRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/gate", tags=["gate"])


def _require_runtime() -> GateRuntime:
    state = get_engine_state()
    if not state.is_initialized:
        raise HTTPException(status_code=503, detail="Gate not initialized")
    return state.runtime


def _status(runtime: GateRuntime) -> GateStatus:
    return GateStatus.from_state(runtime.store.state, runtime.store.locked)


# --- State ---


@router.get(
    "/state",
    response_model=GateStatus,
    summary="Get gate state",
    description="Returns phase, endpoint, UI flags and whether the gate is locked.",
)
async def get_gate_state() -> GateStatus:
    """GET /v1/gate/state"""
    return _status(_require_runtime())


# --- SDK events ---


@router.post("/events/tracking", response_model=EventAccepted)
async def post_tracking(payload: Dict[str, Any] = Body(...)) -> EventAccepted:
    """POST /v1/gate/events/tracking - attribution SDK conversion data."""
    runtime = _require_runtime()
    runtime.collector.receive_tracking(payload)
    return EventAccepted(accepted=True)


@router.post("/events/tracking-failure", response_model=EventAccepted)
async def post_tracking_failure(failure: TrackingFailure) -> EventAccepted:
    """POST /v1/gate/events/tracking-failure - SDK could not fetch conversion data."""
    runtime = _require_runtime()
    runtime.collector.receive_tracking_failure(failure.description)
    return EventAccepted(accepted=True)


@router.post("/events/navigation", response_model=EventAccepted)
async def post_navigation(payload: Dict[str, Any] = Body(...)) -> EventAccepted:
    """POST /v1/gate/events/navigation - deep-link parameters."""
    runtime = _require_runtime()
    accepted = runtime.collector.receive_navigation(payload)
    if not accepted:
        return EventAccepted(accepted=False, detail="Attribution already completed")
    return EventAccepted(accepted=True)


@router.post(
    "/events/push",
    response_model=PushAccepted,
    status_code=202,
    responses={422: {"description": "Payload carries no URL"}},
)
async def post_push(payload: Dict[str, Any] = Body(...)) -> PushAccepted:
    """POST /v1/gate/events/push - notification opened by the user."""
    runtime = _require_runtime()
    url = runtime.push.process(payload)
    if url is None:
        raise HTTPException(status_code=422, detail="No URL in push payload")
    return PushAccepted(
        url=url,
        delivery_delay_seconds=runtime.settings.push_delivery_delay_seconds,
    )


@router.post("/events/push-token", response_model=EventAccepted)
async def post_push_token(update: PushTokenUpdate) -> EventAccepted:
    """POST /v1/gate/events/push-token - device token for remote notifications."""
    runtime = _require_runtime()
    runtime.push.register_token(update.token)
    return EventAccepted(accepted=True)


@router.post("/events/network", response_model=GateStatus)
async def post_network(update: NetworkUpdate) -> GateStatus:
    """POST /v1/gate/events/network - connectivity change."""
    runtime = _require_runtime()
    runtime.store.dispatch(NetworkStatusChanged(connected=update.connected))
    return _status(runtime)


# --- Notification prompt ---


def _callback_adapter(runtime: GateRuntime) -> CallbackPermissionAdapter:
    adapter = runtime.permissions
    if not isinstance(adapter, CallbackPermissionAdapter):
        raise HTTPException(
            status_code=409,
            detail="Permission answers are not accepted by this gate",
        )
    return adapter


@router.post("/notifications/request", response_model=GateStatus)
async def request_notifications() -> GateStatus:
    """POST /v1/gate/notifications/request - user accepted the prompt."""
    runtime = _require_runtime()
    runtime.store.dispatch(NotificationPermissionRequested())
    return _status(runtime)


@router.post("/notifications/grant", response_model=GateStatus)
async def grant_notifications() -> GateStatus:
    """POST /v1/gate/notifications/grant - system dialog answered yes."""
    runtime = _require_runtime()
    _callback_adapter(runtime).grant()
    await runtime.store.settle_permission()
    return _status(runtime)


@router.post("/notifications/deny", response_model=GateStatus)
async def deny_notifications() -> GateStatus:
    """POST /v1/gate/notifications/deny - system dialog answered no."""
    runtime = _require_runtime()
    _callback_adapter(runtime).deny()
    await runtime.store.settle_permission()
    return _status(runtime)


@router.post("/notifications/dismiss", response_model=GateStatus)
async def dismiss_notifications() -> GateStatus:
    """POST /v1/gate/notifications/dismiss - user skipped the prompt."""
    runtime = _require_runtime()
    runtime.store.dispatch(NotificationPromptDismissed())
    return _status(runtime)
