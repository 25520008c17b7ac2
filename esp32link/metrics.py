"""Prometheus metrics for the device client."""

from __future__ import annotations

import asyncio

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server


class MetricsRegistry:
    """Connectivity metrics kept on a private collector registry."""

    def __init__(self, *, port: int = 9001, registry: CollectorRegistry | None = None) -> None:
        self._port = port
        self.registry = registry or CollectorRegistry()
        self.resolutions_total = Counter(
            "esp32_resolutions_total", "Hostname resolutions by cache outcome", ["outcome"],
            registry=self.registry,
        )
        self.requests_total = Counter(
            "esp32_http_requests_total", "HTTP requests sent to the device", ["status"],
            registry=self.registry,
        )
        self.request_latency_seconds = Histogram(
            "esp32_http_request_latency_seconds", "Latency of HTTP requests to the device",
            registry=self.registry,
        )
        self.connect_attempts_total = Counter(
            "esp32_connect_attempts_total", "Streaming session connection attempts", ["status"],
            registry=self.registry,
        )
        self._server_task: asyncio.Task[None] | None = None

    def start_exporter(self) -> None:
        if self._server_task is None:
            loop = asyncio.get_running_loop()
            self._server_task = loop.create_task(self._run_exporter())

    async def _run_exporter(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: start_http_server(self._port, registry=self.registry))


__all__ = ["MetricsRegistry"]
