"""
Test Session Registry
"""

import asyncio

import pytest

from session_relay.core.errors import (
    InitializationFailure,
    InvalidSessionId,
    SessionAlreadyExists,
    SessionNotFound,
)


class TestSessionRegistry:
    """Tests for create / lookup / remove / list"""

    @pytest.mark.asyncio
    async def test_concurrent_starts_register_one_session(self, registry, factory, fake_client):
        fake_client.open_delay = 0.01

        results = await asyncio.gather(
            registry.create_or_get("a", factory),
            registry.create_or_get("a", factory),
        )

        (first, created_first), (second, created_second) = results
        assert first is second
        assert sorted([created_first, created_second]) == [False, True]
        assert len(registry) == 1
        assert len(fake_client.opened) == 1

    @pytest.mark.asyncio
    async def test_create_rejects_duplicates(self, registry, factory):
        await registry.create("a", factory)

        with pytest.raises(SessionAlreadyExists):
            await registry.create("a", factory)

    @pytest.mark.asyncio
    async def test_failed_initialization_is_not_registered(self, registry, factory, fake_client):
        fake_client.open_error = RuntimeError("bridge offline")

        with pytest.raises(InitializationFailure):
            await registry.create_or_get("a", factory)

        assert "a" not in registry
        assert registry.list() == []

    @pytest.mark.asyncio
    async def test_get(self, registry, factory):
        controller, _ = await registry.create_or_get("a", factory)

        assert registry.get("a") is controller

    def test_get_unknown(self, registry):
        with pytest.raises(SessionNotFound):
            registry.get("missing")

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self, registry, factory):
        await registry.create_or_get("a", factory)

        registry.remove("a")
        registry.remove("a")

        assert "a" not in registry

    @pytest.mark.asyncio
    async def test_list(self, registry, factory):
        await registry.create_or_get("a", factory)
        await registry.create_or_get("b", factory)

        assert registry.list() == [
            {"sessionId": "a", "connectionState": "initializing", "isConnected": False},
            {"sessionId": "b", "connectionState": "initializing", "isConnected": False},
        ]

    @pytest.mark.asyncio
    async def test_close_all(self, registry, factory, fake_client):
        await registry.create_or_get("a", factory)
        await registry.create_or_get("b", factory)

        await registry.close_all()

        assert len(registry) == 0
        assert all(handle.closed for handle in fake_client.opened)

    @pytest.mark.asyncio
    async def test_invalid_session_id_is_not_registered(self, registry, factory, fake_client):
        with pytest.raises(InvalidSessionId):
            await registry.create_or_get("../escape", factory)

        assert len(registry) == 0
        assert fake_client.opened == []
