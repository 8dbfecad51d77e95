"""Local gate API: FastAPI app exposing the running gate.

Usage:
    # Start the API
    depthgate serve

    # Read the decision
    curl http://127.0.0.1:47300/v1/gate/state
"""

from depthgate.engine.models import (
    EventAccepted,
    GateStatus,
    NetworkUpdate,
    PushAccepted,
    PushTokenUpdate,
    TrackingFailure,
    UIFlagsModel,
)

__all__ = [
    "EventAccepted",
    "GateStatus",
    "NetworkUpdate",
    "PushAccepted",
    "PushTokenUpdate",
    "TrackingFailure",
    "UIFlagsModel",
]
