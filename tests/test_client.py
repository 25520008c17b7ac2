"""Tests for the client facade composing the connectivity core."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest

from esp32link.client import Esp32Client, connect_to_esp32
from esp32link.config import ActionConfig, ConnectionConfig, DeviceConfig, ResolverConfig, RetryConfig
from esp32link.datamodel import SessionState
from esp32link.errors import ConnectError
from esp32link.resolver import ResolutionCache, Resolver

from conftest import FakeDevice, free_port


@pytest.fixture
async def streaming_port() -> AsyncIterator[int]:
    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while await reader.read(1024):
            pass
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    try:
        yield server.sockets[0].getsockname()[1]
    finally:
        server.close()
        await server.wait_closed()


def _resolver_to(address: str) -> tuple[Resolver, list[str]]:
    calls: list[str] = []

    async def lookup(hostname: str) -> str:
        calls.append(hostname)
        return address

    return Resolver(ResolutionCache(), lookup=lookup), calls


async def test_health_and_run_through_client(device: FakeDevice) -> None:
    config = DeviceConfig(
        connection=ConnectionConfig(host=device.address),
        actions=ActionConfig(token="secret"),
    )

    async with Esp32Client(config) as client:
        health = await client.health()
        accepted = await client.run_action({"job": "blink"})
        rejected = await client.run_action({"job": "blink"}, token="other")

    assert health.status_code == 200
    assert accepted.status_code == 202
    assert rejected.status_code == 401
    assert device.requests[1]["headers"]["Authorization"] == "Bearer secret"


async def test_local_name_is_resolved_once_and_host_header_sent(device: FakeDevice) -> None:
    resolver, calls = _resolver_to(device.address)
    config = DeviceConfig(connection=ConnectionConfig(host="esp32.local"))

    async with Esp32Client(config, resolver=resolver) as client:
        await client.health()
        await client.health()

    assert calls == ["esp32.local"]
    assert device.requests[0]["headers"]["Host"] == "esp32.local"


async def test_connect_returns_ready_session(streaming_port: int) -> None:
    config = DeviceConfig(connection=ConnectionConfig(host="127.0.0.1", port=streaming_port))

    async with Esp32Client(config) as client:
        async with await client.connect() as session:
            assert session.state is SessionState.READY

    assert session.state is SessionState.CLOSED


async def test_failed_connect_drops_cached_local_resolution() -> None:
    resolver, calls = _resolver_to("127.0.0.1")
    config = DeviceConfig(
        connection=ConnectionConfig(host="esp32.local", port=free_port(), connect_timeout_ms=1000),
        retry=RetryConfig(retries=2, retry_delay_ms=10),
    )

    async with Esp32Client(config, resolver=resolver) as client:
        with pytest.raises(ConnectError):
            await client.connect()

    assert calls == ["esp32.local"]
    assert "esp32.local" not in resolver.cache


async def test_connect_to_esp32_helper(streaming_port: int) -> None:
    session = await connect_to_esp32("127.0.0.1", streaming_port, timeout_ms=2000)

    assert session.ready
    session.disconnect()


def test_client_cache_uses_configured_ttl() -> None:
    config = DeviceConfig(resolver=ResolverConfig(ttl_seconds=5))

    client = Esp32Client(config)

    assert client.resolver.cache._ttl == 5
