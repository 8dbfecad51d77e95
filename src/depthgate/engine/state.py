"""Process-wide holder for the running gate."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from depthgate.config import Settings
    from depthgate.gate.runtime import GateRuntime


class EngineState:
    """Singleton managing the gate runtime served by the local API."""

    _instance: "EngineState | None" = None

    def __init__(self):
        self.settings: "Settings | None" = None
        self.runtime: "GateRuntime | None" = None
        self._initialized = False

    @classmethod
    def get_instance(cls) -> "EngineState":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def initialize(self, settings: "Settings", runtime: "GateRuntime") -> None:
        self.settings = settings
        self.runtime = runtime
        self._initialized = True

    @property
    def is_initialized(self) -> bool:
        return self._initialized and self.runtime is not None

    def reset(self) -> None:
        """Reset state (for testing)."""
        self.settings = None
        self.runtime = None
        self._initialized = False
        EngineState._instance = None


def get_engine_state() -> EngineState:
    """Get the global engine state."""
    return EngineState.get_instance()
