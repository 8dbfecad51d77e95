"""Tests for notification permission adapters."""

import asyncio

import pytest

from depthgate.gate.notifications import (
    CallbackPermissionAdapter,
    StaticPermissionAdapter,
)


class TestStaticPermissionAdapter:
    """Tests for StaticPermissionAdapter."""

    @pytest.mark.asyncio
    async def test_answers_fixed_value(self):
        adapter = StaticPermissionAdapter(granted=False)
        assert await adapter.request() is False
        assert await adapter.request() is False
        assert adapter.requests == 2

    def test_records_registration(self):
        adapter = StaticPermissionAdapter(granted=True)
        adapter.register_for_remote()
        assert adapter.registered


class TestCallbackPermissionAdapter:
    """Tests for CallbackPermissionAdapter."""

    @pytest.mark.asyncio
    async def test_grant_resolves_waiting_request(self):
        adapter = CallbackPermissionAdapter()
        task = asyncio.create_task(adapter.request())
        await asyncio.sleep(0)
        assert adapter.is_waiting

        adapter.grant()
        assert await task is True
        assert not adapter.is_waiting

    @pytest.mark.asyncio
    async def test_deny_resolves_waiting_request(self):
        adapter = CallbackPermissionAdapter()
        task = asyncio.create_task(adapter.request())
        await asyncio.sleep(0)
        adapter.deny()
        assert await task is False

    @pytest.mark.asyncio
    async def test_early_answer_kept(self):
        """An answer given before the request is used by the next request."""
        adapter = CallbackPermissionAdapter()
        adapter.deny()
        assert await adapter.request() is False

    def test_registration_callback(self):
        calls = []
        adapter = CallbackPermissionAdapter(on_registered=lambda: calls.append(1))
        adapter.register_for_remote()
        assert calls == [1]
