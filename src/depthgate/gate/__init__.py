"""Gate module: the launch-time local/remote content decision.

Key concepts:
- GateState: phase, persisted config and UI flags
- reduce(): pure transition function
- GateStore: serialized dispatch, effects, decision timer and lock
- AttributionCollector: merges tracking and deep-link payloads
- GatePersistence: field-at-a-time key/value persistence
"""

from depthgate.gate.attribution import AttributionCollector, merge_attribution
from depthgate.gate.backend import (
    BackendClient,
    BackendError,
    DecodingFailedError,
    InvalidURLError,
    RateLimitedError,
    RequestFailedError,
)
from depthgate.gate.persistence import GatePersistence, LoadedConfig
from depthgate.gate.push import PushBridge, extract_url
from depthgate.gate.reducer import reduce
from depthgate.gate.runtime import GateRuntime
from depthgate.gate.state import (
    GateConfig,
    GateState,
    NavigationInfo,
    NotificationInfo,
    NotificationStatus,
    Phase,
    PhaseKind,
    TrackingInfo,
    UIFlags,
)
from depthgate.gate.store import GateStore
from depthgate.gate.validator import RemoteValidator

__all__ = [
    # State
    "GateConfig",
    "GateState",
    "NavigationInfo",
    "NotificationInfo",
    "NotificationStatus",
    "Phase",
    "PhaseKind",
    "TrackingInfo",
    "UIFlags",
    "reduce",
    # Orchestration
    "GateRuntime",
    "GateStore",
    # Collaborators
    "AttributionCollector",
    "merge_attribution",
    "BackendClient",
    "BackendError",
    "DecodingFailedError",
    "InvalidURLError",
    "RateLimitedError",
    "RequestFailedError",
    "GatePersistence",
    "LoadedConfig",
    "PushBridge",
    "extract_url",
    "RemoteValidator",
]
