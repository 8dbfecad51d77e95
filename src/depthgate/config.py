"""Configuration settings for DepthGate."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

logger = logging.getLogger(__name__)

# Mobile Safari UA; the resolution backend answers differently to clients
# that do not look like a browser.
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) "
    "AppleWebKit/605.1.15 (KHTML, like Gecko) Mobile/15E148"
)

ENV_PREFIX = "DEPTHGATE_"


class ConfigError(Exception):
    """Settings file could not be read or parsed."""

    pass


@dataclass(frozen=True)
class Settings:
    """Gate settings.

    Passed explicitly into the validator and backend client; nothing reads
    these values from module globals.
    """

    # Attribution SDK
    app_id: str = "6758240851"
    dev_key: str = ""
    attribution_base_url: str = "https://gcdsdk.appsflyer.com/install_data/v4.0"

    # Endpoint resolution
    config_url: str = "https://deptthnotes.com/config.php"
    bundle_id: str = "com.depthnotes.app"
    firebase_project_id: str = ""
    locale: str = "EN"
    user_agent: str = DEFAULT_USER_AGENT

    # Remote validation record (Realtime Database REST url ending in .json)
    validation_url: str = ""

    # Storage
    db_path: Path = field(
        default_factory=lambda: Path.home() / ".depthgate" / "gate.db"
    )

    # Timing
    decision_timeout_seconds: float = 30.0
    merge_window_seconds: float = 2.5
    organic_delay_seconds: float = 5.0
    retry_delays: tuple[float, ...] = (5.0, 10.0, 20.0)
    connect_timeout_seconds: float = 30.0
    total_timeout_seconds: float = 90.0
    notification_cooldown_days: float = 3.0
    staged_url_ttl_seconds: float = 600.0
    push_delivery_delay_seconds: float = 2.5

    # Connectivity probe
    network_probe_url: str = "https://www.gstatic.com/generate_204"
    network_probe_interval_seconds: float = 10.0

    @classmethod
    def from_file(cls, path: Path) -> "Settings":
        """Load settings from a YAML file, overlaying the defaults.

        Raises:
            ConfigError: If the file is missing or not a YAML mapping
        """
        try:
            raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
        except OSError as e:
            raise ConfigError(f"Cannot read settings file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ConfigError(f"Settings file {path} must contain a mapping")

        return cls().overlay(raw, source=str(path))

    def with_env(self, environ: Mapping[str, str] | None = None) -> "Settings":
        """Overlay DEPTHGATE_* environment variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(self):
            key = ENV_PREFIX + f.name.upper()
            if key in environ:
                values[f.name] = environ[key].strip()
        return self.overlay(values, source="environment")

    def overlay(self, values: Mapping[str, Any], source: str) -> "Settings":
        """Return a copy with recognised keys replaced.

        Unknown keys and values that fail coercion are logged and skipped,
        keeping the current value.
        """
        known = {f.name for f in fields(self)}
        changes: dict[str, Any] = {}

        for name, raw in values.items():
            if name not in known:
                logger.warning(f"Ignoring unknown setting '{name}' from {source}")
                continue
            coerce = _COERCERS.get(name, str)
            try:
                changes[name] = coerce(raw)
            except (TypeError, ValueError):
                logger.warning(
                    f"Invalid value for '{name}' from {source}: {raw!r}, keeping default"
                )

        return replace(self, **changes)

    @property
    def secrets(self) -> tuple[str, ...]:
        """Values that must never appear in logs."""
        return tuple(s for s in (self.dev_key,) if s)


def _to_delays(raw: Any) -> tuple[float, ...]:
    if isinstance(raw, str):
        parts = [p for p in raw.split(",") if p.strip()]
    else:
        parts = list(raw)
    delays = tuple(float(p) for p in parts)
    if not delays or any(d < 0 for d in delays):
        raise ValueError("retry delays must be a non-empty list of non-negative numbers")
    return delays


def _to_path(raw: Any) -> Path:
    return Path(str(raw)).expanduser()


_COERCERS: dict[str, Callable[[Any], Any]] = {
    "db_path": _to_path,
    "retry_delays": _to_delays,
    "decision_timeout_seconds": float,
    "merge_window_seconds": float,
    "organic_delay_seconds": float,
    "connect_timeout_seconds": float,
    "total_timeout_seconds": float,
    "notification_cooldown_days": float,
    "staged_url_ttl_seconds": float,
    "push_delivery_delay_seconds": float,
    "network_probe_interval_seconds": float,
}


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build settings from defaults, an optional YAML file, then environment."""
    settings = Settings.from_file(path) if path is not None else Settings()
    return settings.with_env(environ)
