"""Pydantic models for the local gate API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from depthgate.gate.state import GateState, NotificationStatus, PhaseKind


class UIFlagsModel(BaseModel):
    """Signals the view layer acts on."""

    show_notification_prompt: bool = False
    show_offline_view: bool = False
    navigate_main: bool = False
    navigate_web: bool = False


class GateStatus(BaseModel):
    """Response for GET /v1/gate/state."""

    phase: PhaseKind
    endpoint: Optional[str] = Field(None, description="URL to load when running")
    saved_endpoint: Optional[str] = Field(None, description="Persisted endpoint")
    mode: Optional[str] = None
    first_launch: bool = True
    locked: bool = False
    notifications: NotificationStatus = NotificationStatus.NOT_ASKED
    notifications_last_request: Optional[datetime] = None
    ui: UIFlagsModel = Field(default_factory=UIFlagsModel)

    @classmethod
    def from_state(cls, state: GateState, locked: bool) -> "GateStatus":
        config = state.config
        return cls(
            phase=state.phase.kind,
            endpoint=state.phase.endpoint,
            saved_endpoint=config.endpoint,
            mode=config.mode,
            first_launch=config.first_launch,
            locked=locked,
            notifications=config.notifications.status,
            notifications_last_request=config.notifications.last_request,
            ui=UIFlagsModel(
                show_notification_prompt=state.ui.show_notification_prompt,
                show_offline_view=state.ui.show_offline_view,
                navigate_main=state.ui.navigate_main,
                navigate_web=state.ui.navigate_web,
            ),
        )


class NetworkUpdate(BaseModel):
    """Body for POST /v1/gate/events/network."""

    connected: bool


class PushTokenUpdate(BaseModel):
    """Body for POST /v1/gate/events/push-token."""

    token: str = Field(..., min_length=1)


class EventAccepted(BaseModel):
    """Acknowledgement for inbound SDK events."""

    accepted: bool
    detail: Optional[str] = None


class PushAccepted(BaseModel):
    """Response for POST /v1/gate/events/push."""

    url: str
    delivery_delay_seconds: float


class TrackingFailure(BaseModel):
    """Body for POST /v1/gate/events/tracking-failure."""

    description: str = "unknown error"
