"""Pydantic models for gate events.

Every change to the gate goes through GateStore.dispatch() with one of
these events. External collaborators (SDK adapters, the view layer, the
local API) only ever construct events; they never touch state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class GateEvent(BaseModel):
    """Base event model."""

    model_config = ConfigDict(frozen=True)

    event_type: str


# --- Lifecycle ---


class Initialize(GateEvent):
    event_type: Literal["initialize"] = "initialize"


class Timeout(GateEvent):
    """Decision timer expired."""

    event_type: Literal["timeout"] = "timeout"


class ConfigLoaded(GateEvent):
    """Persisted configuration read at startup."""

    event_type: Literal["config_loaded"] = "config_loaded"
    endpoint: Optional[str] = None
    mode: Optional[str] = None
    first_launch: bool = True
    tracking: Dict[str, str] = Field(default_factory=dict)
    navigation: Dict[str, str] = Field(default_factory=dict)
    notifications_approved: bool = False
    notifications_rejected: bool = False
    notifications_last_request: Optional[datetime] = None


# --- Attribution ---


class TrackingReceived(GateEvent):
    event_type: Literal["tracking_received"] = "tracking_received"
    data: Dict[str, Any] = Field(default_factory=dict)


class NavigationReceived(GateEvent):
    event_type: Literal["navigation_received"] = "navigation_received"
    data: Dict[str, Any] = Field(default_factory=dict)


# --- Network ---


class NetworkStatusChanged(GateEvent):
    event_type: Literal["network_status_changed"] = "network_status_changed"
    connected: bool


# --- Validation ---


class ValidationStarted(GateEvent):
    event_type: Literal["validation_started"] = "validation_started"


class ValidationSucceeded(GateEvent):
    event_type: Literal["validation_succeeded"] = "validation_succeeded"


class ValidationFailed(GateEvent):
    event_type: Literal["validation_failed"] = "validation_failed"


# --- Remote fetches ---


class FetchTrackingStarted(GateEvent):
    event_type: Literal["fetch_tracking_started"] = "fetch_tracking_started"


class FetchTrackingSucceeded(GateEvent):
    event_type: Literal["fetch_tracking_succeeded"] = "fetch_tracking_succeeded"
    data: Dict[str, Any] = Field(default_factory=dict)


class FetchTrackingFailed(GateEvent):
    event_type: Literal["fetch_tracking_failed"] = "fetch_tracking_failed"


class FetchEndpointStarted(GateEvent):
    event_type: Literal["fetch_endpoint_started"] = "fetch_endpoint_started"


class FetchEndpointSucceeded(GateEvent):
    event_type: Literal["fetch_endpoint_succeeded"] = "fetch_endpoint_succeeded"
    endpoint: str


class FetchEndpointFailed(GateEvent):
    event_type: Literal["fetch_endpoint_failed"] = "fetch_endpoint_failed"


class EndpointAdopted(GateEvent):
    """A URL was adopted without a resolution call.

    source is "staged" for a URL pushed by a notification earlier in this
    process, "saved" for the endpoint persisted by a previous launch.
    """

    event_type: Literal["endpoint_adopted"] = "endpoint_adopted"
    endpoint: str
    source: Literal["staged", "saved"]


# --- Notifications ---


class NotificationPermissionRequested(GateEvent):
    event_type: Literal["notification_permission_requested"] = (
        "notification_permission_requested"
    )


class NotificationPermissionGranted(GateEvent):
    event_type: Literal["notification_permission_granted"] = (
        "notification_permission_granted"
    )


class NotificationPermissionDenied(GateEvent):
    event_type: Literal["notification_permission_denied"] = (
        "notification_permission_denied"
    )


class NotificationPromptDismissed(GateEvent):
    event_type: Literal["notification_prompt_dismissed"] = (
        "notification_prompt_dismissed"
    )


# --- Navigation ---


class NavigateToMain(GateEvent):
    event_type: Literal["navigate_to_main"] = "navigate_to_main"


class NavigateToWeb(GateEvent):
    event_type: Literal["navigate_to_web"] = "navigate_to_web"
