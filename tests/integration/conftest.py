"""Shared fixtures for integration tests."""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from depthgate.config import Settings
from depthgate.engine.app import create_gate_app
from depthgate.engine.state import EngineState
from depthgate.gate.notifications import (
    CallbackPermissionAdapter,
    StaticPermissionAdapter,
)
from depthgate.gate.runtime import GateRuntime

REMOTE_URL = "https://web.example.com/landing"


class FakeValidator:
    def __init__(self, result=True):
        self.result = result

    async def validate(self):
        await asyncio.sleep(0)
        return self.result


class FakeBackend:
    def __init__(self, endpoint=REMOTE_URL):
        self.endpoint = endpoint
        self.endpoint_calls = []

    async def fetch_tracking(self, device_id):
        return {"af_status": "Non-organic"}

    async def fetch_endpoint(self, tracking, *, device_id, push_token=None):
        self.endpoint_calls.append({"tracking": tracking, "push_token": push_token})
        return self.endpoint


@pytest.fixture(autouse=True)
def reset_engine_state():
    """Reset engine state singleton between tests."""
    yield
    EngineState.get_instance().reset()


@pytest.fixture
def gate_settings(tmp_path):
    return Settings(
        db_path=tmp_path / "gate.db",
        decision_timeout_seconds=5.0,
        merge_window_seconds=0.01,
        organic_delay_seconds=0.01,
        push_delivery_delay_seconds=0.01,
        retry_delays=(0.0,),
        network_probe_url="",
    )


def make_client(settings, validator_result=True, permissions=None):
    backend = FakeBackend()

    def factory(resolved):
        return GateRuntime(
            resolved,
            validator=FakeValidator(validator_result),
            backend=backend,
            permissions=permissions or CallbackPermissionAdapter(),
        )

    app = create_gate_app(settings=settings, runtime_factory=factory)
    return app, backend


@pytest.fixture
def gate_client(gate_settings):
    """Test client for a gate whose remote checks succeed."""
    app, backend = make_client(gate_settings)
    with TestClient(app) as client:
        yield client, backend


@pytest.fixture
def rejecting_gate_client(gate_settings):
    """Test client for a gate whose validation record is missing."""
    app, backend = make_client(gate_settings, validator_result=False)
    with TestClient(app) as client:
        yield client, backend


def _wait_for_state(client, predicate, timeout=3.0):
    """Poll GET /v1/gate/state until predicate(body) holds."""
    deadline = time.monotonic() + timeout
    body = None
    while time.monotonic() < deadline:
        body = client.get("/v1/gate/state").json()
        if predicate(body):
            return body
        time.sleep(0.02)
    raise AssertionError(f"Gate state never matched, last: {body}")


@pytest.fixture
def wait_for_state():
    return _wait_for_state


@pytest.fixture
def static_gate_client(gate_settings):
    """Test client whose permission answers are fixed at construction."""
    app, backend = make_client(
        gate_settings, permissions=StaticPermissionAdapter(granted=True)
    )
    with TestClient(app) as client:
        yield client, backend
