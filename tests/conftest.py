"""Shared fixtures: an in-process HTTP device and loopback helpers."""

from __future__ import annotations

import asyncio
import socket
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer


@dataclass
class FakeDevice:
    """Records what the HTTP device surface received."""

    server: TestServer
    release: asyncio.Event
    requests: list[dict[str, object]] = field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.server.host}:{self.server.port}"

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))


def free_port() -> int:
    """Return a loopback port with nothing listening on it."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def device() -> AsyncIterator[FakeDevice]:
    release = asyncio.Event()
    recorded: list[dict[str, object]] = []

    async def record(request: web.Request) -> None:
        recorded.append(
            {
                "method": request.method,
                "path": request.path,
                "query": dict(request.query),
                "headers": dict(request.headers),
                "body": await request.text(),
            }
        )

    async def health(request: web.Request) -> web.Response:
        await record(request)
        return web.Response(text='{"status":"ok"}', content_type="application/json")

    async def run(request: web.Request) -> web.Response:
        await record(request)
        if request.headers.get("Authorization") != "Bearer secret":
            return web.Response(status=401, text="unauthorized")
        return web.Response(status=202, text="accepted")

    async def busy(request: web.Request) -> web.Response:
        await record(request)
        return web.Response(status=503, text="busy, try later")

    async def stall(request: web.Request) -> web.Response:
        await record(request)
        try:
            await asyncio.wait_for(release.wait(), timeout=5)
        except asyncio.TimeoutError:
            pass
        return web.Response(text="late")

    app = web.Application()
    app.router.add_get("/health", health)
    app.router.add_post("/run", run)
    app.router.add_get("/busy", busy)
    app.router.add_get("/stall", stall)

    server = TestServer(app, host="127.0.0.1")
    await server.start_server()
    fake = FakeDevice(server=server, release=release, requests=recorded)
    try:
        yield fake
    finally:
        release.set()
        await server.close()
