"""Pooled HTTP transport with hard per-request timeouts."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping

import aiohttp

from .config import TransportConfig
from .datamodel import ActionRequest, ActionResult
from .errors import RequestTimeoutError, TransportError
from .metrics import MetricsRegistry


class TransportClient:
    """Issues bounded-time HTTP requests over a shared connection pool.

    The underlying :class:`aiohttp.ClientSession` is created lazily and keeps
    at most ``max_connections`` connections open so that a small device is
    not flooded. A request that exceeds its timeout is cancelled, which
    returns its connection to the pool.
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        *,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._config = config or TransportConfig()
        self._metrics = metrics
        self._session: aiohttp.ClientSession | None = None
        self._lock = asyncio.Lock()
        self._logger = logging.getLogger(__name__)

    async def __aenter__(self) -> "TransportClient":
        await self.ensure_session()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def ensure_session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session is None:
                connector = aiohttp.TCPConnector(
                    limit=self._config.max_connections,
                    limit_per_host=self._config.max_connections,
                )
                self._session = aiohttp.ClientSession(connector=connector)
            return self._session

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: str | None = None,
        timeout_ms: int | None = None,
    ) -> ActionResult:
        return await self.send(
            ActionRequest(method=method, url=url, headers=dict(headers or {}), body=body, timeout_ms=timeout_ms)
        )

    async def send(self, request: ActionRequest) -> ActionResult:
        """Perform ``request`` and return the raw status code and body text."""

        timeout_ms = request.timeout_ms or self._config.timeout_ms
        session = await self.ensure_session()
        start = time.perf_counter()
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                async with session.request(
                    request.method, request.url, headers=dict(request.headers), data=request.body
                ) as response:
                    body = await response.text(errors="replace")
        except TimeoutError as exc:
            self._count("timeout")
            raise RequestTimeoutError(
                f"{request.method} {request.url} timed out after {timeout_ms}ms"
            ) from exc
        except (aiohttp.ClientError, OSError) as exc:
            self._count("error")
            raise TransportError(f"{request.method} {request.url} failed: {exc}") from exc

        self._count(str(response.status))
        if self._metrics is not None:
            self._metrics.request_latency_seconds.observe(time.perf_counter() - start)
        self._logger.debug("%s %s -> %d", request.method, request.url, response.status)
        return ActionResult(status_code=response.status, body=body)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _count(self, status: str) -> None:
        if self._metrics is not None:
            self._metrics.requests_total.labels(status=status).inc()


__all__ = ["TransportClient"]
