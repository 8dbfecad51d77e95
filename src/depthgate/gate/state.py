"""Gate state: phase, configuration and UI flags.

All types here are immutable. The reducer produces a new GateState for
every event; nothing edits a state in place.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

ORGANIC_MARKER_KEY = "af_status"
ORGANIC_MARKER_VALUE = "Organic"
ACTIVE_MODE = "Active"

NOTIFICATION_COOLDOWN = timedelta(days=3)


class PhaseKind(str, Enum):
    """Gate phases."""

    START = "start"
    LOADING = "loading"
    CHECKING = "checking"
    APPROVED = "approved"
    RUNNING = "running"
    PAUSED = "paused"
    OFFLINE = "offline"  # listed for completeness; no transition produces it


TERMINAL_PHASES = frozenset({PhaseKind.RUNNING, PhaseKind.PAUSED})


@dataclass(frozen=True)
class Phase:
    """Current phase. Only RUNNING carries an endpoint."""

    kind: PhaseKind
    endpoint: str | None = None

    def __post_init__(self) -> None:
        if (self.kind == PhaseKind.RUNNING) != (self.endpoint is not None):
            raise ValueError(f"Phase {self.kind.value} cannot carry endpoint {self.endpoint!r}")

    @classmethod
    def start(cls) -> "Phase":
        return cls(PhaseKind.START)

    @classmethod
    def loading(cls) -> "Phase":
        return cls(PhaseKind.LOADING)

    @classmethod
    def checking(cls) -> "Phase":
        return cls(PhaseKind.CHECKING)

    @classmethod
    def approved(cls) -> "Phase":
        return cls(PhaseKind.APPROVED)

    @classmethod
    def running(cls, endpoint: str) -> "Phase":
        return cls(PhaseKind.RUNNING, endpoint)

    @classmethod
    def paused(cls) -> "Phase":
        return cls(PhaseKind.PAUSED)

    @property
    def is_terminal(self) -> bool:
        """RUNNING and PAUSED end the gate; no further phase changes."""
        return self.kind in TERMINAL_PHASES

    def __str__(self) -> str:
        if self.endpoint is not None:
            return f"{self.kind.value}({self.endpoint})"
        return self.kind.value


def normalize_payload(data: Mapping[str, Any]) -> dict[str, str]:
    """Flatten an SDK payload into string values.

    None values are dropped; nested containers are kept as compact JSON.
    """
    result: dict[str, str] = {}
    for key, value in data.items():
        if value is None:
            continue
        if isinstance(value, bool):
            result[str(key)] = "true" if value else "false"
        elif isinstance(value, (dict, list, tuple)):
            result[str(key)] = json.dumps(value, separators=(",", ":"), default=str)
        else:
            result[str(key)] = str(value)
    return result


@dataclass(frozen=True)
class _PayloadInfo:
    data: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))

    @property
    def has_content(self) -> bool:
        return bool(self.data)

    def to_dict(self) -> dict[str, str]:
        return dict(self.data)


@dataclass(frozen=True)
class TrackingInfo(_PayloadInfo):
    """Install attribution record."""

    @property
    def is_organic(self) -> bool:
        return self.data.get(ORGANIC_MARKER_KEY) == ORGANIC_MARKER_VALUE

    @classmethod
    def empty(cls) -> "TrackingInfo":
        return cls()


@dataclass(frozen=True)
class NavigationInfo(_PayloadInfo):
    """Deep-link click payload."""

    @classmethod
    def empty(cls) -> "NavigationInfo":
        return cls()


class NotificationStatus(str, Enum):
    NOT_ASKED = "not_asked"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class NotificationInfo:
    """Notification permission state with a re-ask cooldown."""

    status: NotificationStatus = NotificationStatus.NOT_ASKED
    last_request: datetime | None = None

    def can_ask(
        self,
        now: datetime,
        cooldown: timedelta = NOTIFICATION_COOLDOWN,
    ) -> bool:
        """True iff never answered and the cooldown since the last ask has passed."""
        if self.status != NotificationStatus.NOT_ASKED:
            return False
        if self.last_request is None:
            return True
        return now - self.last_request >= cooldown

    @classmethod
    def initial(cls) -> "NotificationInfo":
        return cls()


@dataclass(frozen=True)
class GateConfig:
    """Persisted gate configuration.

    `endpoint` only ever goes from None to a value; `first_launch` only
    ever goes from True to False.
    """

    endpoint: str | None = None
    mode: str | None = None
    first_launch: bool = True
    tracking: TrackingInfo = field(default_factory=TrackingInfo.empty)
    navigation: NavigationInfo = field(default_factory=NavigationInfo.empty)
    notifications: NotificationInfo = field(default_factory=NotificationInfo.initial)

    @classmethod
    def initial(cls) -> "GateConfig":
        return cls()


@dataclass(frozen=True)
class UIFlags:
    """Flags read by the view layer.

    navigate_main (local content) and navigate_web (remote content) are
    never both set.
    """

    show_notification_prompt: bool = False
    show_offline_view: bool = False
    navigate_main: bool = False
    navigate_web: bool = False

    @property
    def decided(self) -> bool:
        return self.navigate_main or self.navigate_web or self.show_notification_prompt

    @classmethod
    def initial(cls) -> "UIFlags":
        return cls()


@dataclass(frozen=True)
class GateState:
    phase: Phase = field(default_factory=Phase.start)
    config: GateConfig = field(default_factory=GateConfig.initial)
    ui: UIFlags = field(default_factory=UIFlags.initial)

    @classmethod
    def initial(cls) -> "GateState":
        return cls()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API/CLI output."""
        notifications = self.config.notifications
        return {
            "phase": self.phase.kind.value,
            "endpoint": self.phase.endpoint,
            "config": {
                "endpoint": self.config.endpoint,
                "mode": self.config.mode,
                "first_launch": self.config.first_launch,
                "tracking": self.config.tracking.to_dict(),
                "navigation": self.config.navigation.to_dict(),
                "notifications": {
                    "status": notifications.status.value,
                    "last_request": (
                        notifications.last_request.isoformat()
                        if notifications.last_request
                        else None
                    ),
                },
            },
            "ui": {
                "show_notification_prompt": self.ui.show_notification_prompt,
                "show_offline_view": self.ui.show_offline_view,
                "navigate_main": self.ui.navigate_main,
                "navigate_web": self.ui.navigate_web,
            },
        }
