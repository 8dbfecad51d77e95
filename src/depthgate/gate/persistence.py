"""Persistence gateway for gate state.

Each config field is its own key/value record, written the moment the value
is known. There are no cross-field transactions: a crash between two saves
leaves a valid but incomplete config, which load() reconstructs.

Read order for the endpoint and tracking payload: in-process memory mirror,
then the shared store, then the local cache. Any storage or decode failure
is logged and read back as "absent".
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

SHARED_NAMESPACE = "shared"
LOCAL_NAMESPACE = "local"


class Key:
    """Persisted key names."""

    TRACKING = "dn_tracking_payload"
    NAVIGATION = "dn_navigation_payload"
    ENDPOINT = "dn_endpoint_target"
    MODE = "dn_mode_active"
    FIRST_LAUNCH = "dn_first_launch_flag"
    NOTIF_APPROVED = "dn_notif_approved"
    NOTIF_REJECTED = "dn_notif_rejected"
    NOTIF_DATE = "dn_notif_date"
    ATTRIBUTION_COMPLETED = "dn_attribution_completed"
    STAGED_URL = "temp_url"
    STAGED_URL_TIMESTAMP = "temp_url_timestamp"
    PUSH_TOKEN = "push_token"
    DEVICE_ID = "device_id"


KV_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS gate_kv (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (namespace, key)
);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Open the gate database with WAL mode and the key/value schema.

    The connection is shared by the event loop thread and the API worker
    thread; the store serializes all access.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.executescript(KV_SCHEMA_SQL)
    conn.commit()
    return conn


class KeyValueStore:
    """One namespace of the gate_kv table."""

    def __init__(self, conn: sqlite3.Connection, namespace: str):
        self._conn = conn
        self.namespace = namespace

    def get(self, key: str) -> str | None:
        """Read a value; storage errors read as absent."""
        try:
            row = self._conn.execute(
                "SELECT value FROM gate_kv WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Read of {self.namespace}/{key} failed: {e}")
            return None
        return row["value"] if row else None

    def set(self, key: str, value: str) -> bool:
        """Write a value immediately. Returns False if the write failed."""
        try:
            self._conn.execute(
                """
                INSERT INTO gate_kv (namespace, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (
                    self.namespace,
                    key,
                    value,
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            self._conn.commit()
            return True
        except sqlite3.Error as e:
            logger.warning(f"Write of {self.namespace}/{key} failed: {e}")
            return False

    def delete(self, key: str) -> None:
        try:
            self._conn.execute(
                "DELETE FROM gate_kv WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Delete of {self.namespace}/{key} failed: {e}")

    def get_bool(self, key: str) -> bool:
        return self.get(key) == "1"

    def set_bool(self, key: str, value: bool) -> bool:
        return self.set(key, "1" if value else "0")

    def items(self) -> dict[str, str]:
        try:
            rows = self._conn.execute(
                "SELECT key, value FROM gate_kv WHERE namespace = ? ORDER BY key",
                (self.namespace,),
            ).fetchall()
        except sqlite3.Error as e:
            logger.warning(f"Listing {self.namespace} failed: {e}")
            return {}
        return {row["key"]: row["value"] for row in rows}


# --- Payload encoding ---


def encode_mapping(data: Mapping[str, str]) -> str:
    return json.dumps(dict(data), separators=(",", ":"), ensure_ascii=False)


def decode_mapping(text: str) -> dict[str, str] | None:
    """Parse a JSON object into a string mapping, or None if malformed."""
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(k): str(v) for k, v in parsed.items()}


def obfuscate(text: str) -> str:
    """Base64 with '=' and '+' swapped out. Reversible; not encryption."""
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    return encoded.replace("=", "|").replace("+", "~")


def deobfuscate(text: str) -> str | None:
    restored = text.replace("|", "=").replace("~", "+")
    try:
        return base64.b64decode(restored, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None


# --- Loaded config ---


@dataclass(frozen=True)
class NotificationRecord:
    approved: bool = False
    rejected: bool = False
    last_request: datetime | None = None


@dataclass(frozen=True)
class LoadedConfig:
    """Best-effort reconstruction of the persisted config."""

    endpoint: str | None = None
    mode: str | None = None
    is_first_launch: bool = True
    tracking: dict[str, str] = field(default_factory=dict)
    navigation: dict[str, str] = field(default_factory=dict)
    notifications: NotificationRecord = field(default_factory=NotificationRecord)


class GatePersistence:
    """Field-at-a-time persistence of the gate config."""

    def __init__(
        self,
        shared: KeyValueStore,
        local: KeyValueStore,
        conn: sqlite3.Connection | None = None,
    ):
        self._shared = shared
        self._local = local
        self._conn = conn
        self._memory: dict[str, str] = {}
        self._preload()

    @classmethod
    def open(cls, db_path: Path) -> "GatePersistence":
        """Open (or create) the gate database at db_path."""
        conn = get_connection(db_path)
        return cls(
            KeyValueStore(conn, SHARED_NAMESPACE),
            KeyValueStore(conn, LOCAL_NAMESPACE),
            conn=conn,
        )

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _preload(self) -> None:
        endpoint = self._shared.get(Key.ENDPOINT)
        if endpoint:
            self._memory[Key.ENDPOINT] = endpoint

    # --- Saves ---

    def save_tracking(self, tracking: Mapping[str, str]) -> None:
        encoded = encode_mapping(tracking)
        self._memory[Key.TRACKING] = encoded
        self._shared.set(Key.TRACKING, encoded)

    def save_navigation(self, navigation: Mapping[str, str]) -> None:
        self._shared.set(Key.NAVIGATION, obfuscate(encode_mapping(navigation)))

    def save_endpoint(self, endpoint: str) -> None:
        self._memory[Key.ENDPOINT] = endpoint
        self._shared.set(Key.ENDPOINT, endpoint)
        self._local.set(Key.ENDPOINT, endpoint)

    def save_mode(self, mode: str) -> None:
        self._shared.set(Key.MODE, mode)

    def mark_first_launch_done(self) -> None:
        self._shared.set_bool(Key.FIRST_LAUNCH, True)

    def save_notifications(self, record: NotificationRecord) -> None:
        self._shared.set_bool(Key.NOTIF_APPROVED, record.approved)
        self._shared.set_bool(Key.NOTIF_REJECTED, record.rejected)
        if record.last_request is not None:
            millis = record.last_request.timestamp() * 1000
            self._shared.set(Key.NOTIF_DATE, repr(millis))

    # --- Load ---

    def load(self) -> LoadedConfig:
        """Reconstruct the config; missing or corrupt fields fall back to defaults."""
        endpoint = (
            self._memory.get(Key.ENDPOINT)
            or self._shared.get(Key.ENDPOINT)
            or self._local.get(Key.ENDPOINT)
        )

        tracking: dict[str, str] = {}
        raw_tracking = self._memory.get(Key.TRACKING) or self._shared.get(Key.TRACKING)
        if raw_tracking:
            decoded = decode_mapping(raw_tracking)
            if decoded is None:
                logger.warning("Stored tracking payload is corrupt, ignoring")
            else:
                tracking = decoded

        navigation: dict[str, str] = {}
        raw_navigation = self._shared.get(Key.NAVIGATION)
        if raw_navigation:
            plain = deobfuscate(raw_navigation)
            decoded = decode_mapping(plain) if plain is not None else None
            if decoded is None:
                logger.warning("Stored navigation payload is corrupt, ignoring")
            else:
                navigation = decoded

        return LoadedConfig(
            endpoint=endpoint,
            mode=self._shared.get(Key.MODE),
            is_first_launch=not self._shared.get_bool(Key.FIRST_LAUNCH),
            tracking=tracking,
            navigation=navigation,
            notifications=NotificationRecord(
                approved=self._shared.get_bool(Key.NOTIF_APPROVED),
                rejected=self._shared.get_bool(Key.NOTIF_REJECTED),
                last_request=self._load_notification_date(),
            ),
        )

    def _load_notification_date(self) -> datetime | None:
        raw = self._shared.get(Key.NOTIF_DATE)
        if not raw:
            return None
        try:
            millis = float(raw)
            if millis <= 0:
                return None
            return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            logger.warning(f"Stored notification date is corrupt: {raw!r}")
            return None

    # --- Local-only records ---

    def is_attribution_completed(self) -> bool:
        return self._local.get_bool(Key.ATTRIBUTION_COMPLETED)

    def mark_attribution_completed(self) -> None:
        self._local.set_bool(Key.ATTRIBUTION_COMPLETED, True)

    def stage_url(self, url: str, at: float | None = None) -> None:
        """Stage a URL pushed by a notification until the gate consumes it."""
        at = time.time() if at is None else at
        self._memory[Key.STAGED_URL] = url
        self._local.set(Key.STAGED_URL, url)
        self._local.set(Key.STAGED_URL_TIMESTAMP, repr(at))

    def staged_url(self, now: float | None = None, ttl: float | None = None) -> str | None:
        """Return the staged URL unless it is older than ttl seconds."""
        url = self._memory.get(Key.STAGED_URL) or self._local.get(Key.STAGED_URL)
        if not url:
            return None
        if ttl is None:
            return url

        raw_ts = self._local.get(Key.STAGED_URL_TIMESTAMP)
        try:
            staged_at = float(raw_ts) if raw_ts else None
        except ValueError:
            staged_at = None
        if staged_at is None:
            return None

        now = time.time() if now is None else now
        if now - staged_at > ttl:
            logger.info("Ignoring stale staged URL")
            return None
        return url

    def clear_staged_url(self) -> None:
        self._memory.pop(Key.STAGED_URL, None)
        self._local.delete(Key.STAGED_URL)
        self._local.delete(Key.STAGED_URL_TIMESTAMP)

    def save_push_token(self, token: str) -> None:
        self._memory[Key.PUSH_TOKEN] = token
        self._local.set(Key.PUSH_TOKEN, token)

    def push_token(self) -> str | None:
        return self._memory.get(Key.PUSH_TOKEN) or self._local.get(Key.PUSH_TOKEN)

    def ensure_device_id(self) -> str:
        """Return the install's device id, generating one on first use.

        Format follows the attribution SDK: "<epoch millis>-<19 digits>".
        """
        device_id = self._local.get(Key.DEVICE_ID)
        if device_id:
            return device_id
        device_id = f"{int(time.time() * 1000)}-{secrets.randbelow(10**19):019d}"
        self._local.set(Key.DEVICE_ID, device_id)
        return device_id

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Raw stored records per namespace, for inspection."""
        return {
            self._shared.namespace: self._shared.items(),
            self._local.namespace: self._local.items(),
        }
