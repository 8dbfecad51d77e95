"""Tests for the gate persistence gateway."""

import re
from datetime import datetime, timezone

import pytest

from depthgate.gate.persistence import (
    LOCAL_NAMESPACE,
    SHARED_NAMESPACE,
    GatePersistence,
    Key,
    KeyValueStore,
    NotificationRecord,
    deobfuscate,
    get_connection,
    obfuscate,
)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "gate.db"


@pytest.fixture
def persistence(db_path):
    gateway = GatePersistence.open(db_path)
    yield gateway
    gateway.close()


class TestConnection:
    """Tests for database setup."""

    def test_wal_mode_enabled(self, db_path):
        conn = get_connection(db_path)
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        conn.close()

    def test_creates_parent_directory(self, tmp_path):
        conn = get_connection(tmp_path / "nested" / "dir" / "gate.db")
        assert (tmp_path / "nested" / "dir").is_dir()
        conn.close()

    def test_namespaces_are_separate(self, db_path):
        conn = get_connection(db_path)
        shared = KeyValueStore(conn, SHARED_NAMESPACE)
        local = KeyValueStore(conn, LOCAL_NAMESPACE)
        shared.set("k", "shared-value")
        assert local.get("k") is None
        assert shared.get("k") == "shared-value"
        conn.close()

    def test_closed_connection_reads_as_absent(self, db_path):
        """Storage errors are treated as misses, never raised."""
        conn = get_connection(db_path)
        store = KeyValueStore(conn, SHARED_NAMESPACE)
        conn.close()
        assert store.get("k") is None
        assert store.set("k", "v") is False


class TestObfuscation:
    """Tests for the navigation payload encoding."""

    def test_no_padding_or_plus_characters(self):
        text = '{"deep_link_value":"fish>>?"}'
        encoded = obfuscate(text)
        assert "=" not in encoded
        assert "+" not in encoded
        assert deobfuscate(encoded) == text

    def test_garbage_decodes_to_none(self):
        assert deobfuscate("not base64 at all!") is None


class TestLoad:
    """Tests for reconstructing the config."""

    def test_fresh_install_defaults(self, persistence):
        loaded = persistence.load()
        assert loaded.endpoint is None
        assert loaded.mode is None
        assert loaded.is_first_launch is True
        assert loaded.tracking == {}
        assert loaded.navigation == {}
        assert loaded.notifications == NotificationRecord()

    def test_saved_fields_survive_reopen(self, db_path):
        gateway = GatePersistence.open(db_path)
        gateway.save_tracking({"af_status": "Non-organic"})
        gateway.save_navigation({"deep_link_value": "promo"})
        gateway.save_endpoint("https://web.example.com")
        gateway.save_mode("Active")
        gateway.mark_first_launch_done()
        gateway.close()

        reopened = GatePersistence.open(db_path)
        loaded = reopened.load()
        reopened.close()

        assert loaded.tracking == {"af_status": "Non-organic"}
        assert loaded.navigation == {"deep_link_value": "promo"}
        assert loaded.endpoint == "https://web.example.com"
        assert loaded.mode == "Active"
        assert loaded.is_first_launch is False

    def test_navigation_stored_obfuscated(self, persistence):
        persistence.save_navigation({"deep_link_value": "promo"})
        raw = persistence.snapshot()[SHARED_NAMESPACE][Key.NAVIGATION]
        assert "promo" not in raw

    def test_endpoint_falls_back_to_local_cache(self, db_path):
        conn = get_connection(db_path)
        KeyValueStore(conn, LOCAL_NAMESPACE).set(Key.ENDPOINT, "https://cached.example.com")
        conn.close()

        gateway = GatePersistence.open(db_path)
        assert gateway.load().endpoint == "https://cached.example.com"
        gateway.close()

    def test_corrupt_tracking_reads_as_empty(self, db_path):
        conn = get_connection(db_path)
        KeyValueStore(conn, SHARED_NAMESPACE).set(Key.TRACKING, "{not json")
        KeyValueStore(conn, SHARED_NAMESPACE).set(Key.NAVIGATION, "%%%")
        conn.close()

        gateway = GatePersistence.open(db_path)
        loaded = gateway.load()
        gateway.close()
        assert loaded.tracking == {}
        assert loaded.navigation == {}

    @pytest.mark.parametrize("raw", ["nan", "inf", "-inf", "1e300", "soon"])
    def test_corrupt_notification_date_reads_as_absent(self, db_path, raw):
        conn = get_connection(db_path)
        shared = KeyValueStore(conn, SHARED_NAMESPACE)
        shared.set(Key.NOTIF_DATE, raw)
        shared.set_bool(Key.NOTIF_REJECTED, True)
        conn.close()

        gateway = GatePersistence.open(db_path)
        loaded = gateway.load()
        gateway.close()
        assert loaded.notifications.last_request is None
        assert loaded.notifications.rejected is True

    def test_notification_record(self, persistence):
        asked = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
        persistence.save_notifications(NotificationRecord(rejected=True, last_request=asked))

        loaded = persistence.load().notifications
        assert loaded.rejected is True
        assert loaded.approved is False
        assert loaded.last_request == asked

    def test_notification_date_stored_as_epoch_millis(self, persistence):
        asked = datetime(2026, 3, 1, tzinfo=timezone.utc)
        persistence.save_notifications(NotificationRecord(last_request=asked))
        raw = persistence.snapshot()[SHARED_NAMESPACE][Key.NOTIF_DATE]
        assert float(raw) == asked.timestamp() * 1000


class TestLocalRecords:
    """Tests for records kept in the local namespace."""

    def test_attribution_completed_flag(self, persistence):
        assert not persistence.is_attribution_completed()
        persistence.mark_attribution_completed()
        assert persistence.is_attribution_completed()

    def test_staged_url_within_ttl(self, persistence):
        persistence.stage_url("https://push.example.com", at=1000.0)
        assert persistence.staged_url(now=1500.0, ttl=600) == "https://push.example.com"

    def test_staged_url_expires(self, persistence):
        persistence.stage_url("https://push.example.com", at=1000.0)
        assert persistence.staged_url(now=1601.0, ttl=600) is None

    def test_staged_url_cleared(self, persistence):
        persistence.stage_url("https://push.example.com", at=1000.0)
        persistence.clear_staged_url()
        assert persistence.staged_url() is None
        assert Key.STAGED_URL not in persistence.snapshot()[LOCAL_NAMESPACE]

    def test_staged_url_not_saved_as_endpoint(self, persistence):
        persistence.stage_url("https://push.example.com", at=1000.0)
        assert persistence.load().endpoint is None

    def test_push_token(self, persistence):
        assert persistence.push_token() is None
        persistence.save_push_token("tok-123")
        assert persistence.push_token() == "tok-123"

    def test_device_id_format_and_stability(self, persistence):
        device_id = persistence.ensure_device_id()
        assert re.fullmatch(r"\d+-\d{19}", device_id)
        assert persistence.ensure_device_id() == device_id
