"""Client facade composing resolution, transport, sessions and actions."""

from __future__ import annotations

import logging
from typing import Any

from .actions import ActionDispatcher
from .config import ConnectionConfig, DeviceConfig
from .connection import ConnectionManager, DeviceSession, Handshake
from .datamodel import ActionResult, ResolvedAddress
from .errors import ConnectError
from .metrics import MetricsRegistry
from .resolver import ResolutionCache, Resolver
from .retry import connect_with_retry
from .transport import TransportClient


class Esp32Client:
    """Entry point for talking to one device over both access paths.

    Owns the resolver cache and the pooled HTTP transport; sessions returned
    by :meth:`connect` belong to the caller.
    """

    def __init__(
        self,
        config: DeviceConfig | None = None,
        *,
        resolver: Resolver | None = None,
        transport: TransportClient | None = None,
        connections: ConnectionManager | None = None,
        handshake: Handshake | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._config = config or DeviceConfig()
        self._metrics = metrics
        self._resolver = resolver or Resolver(
            ResolutionCache(self._config.resolver.ttl_seconds),
            lookup_timeout_ms=self._config.resolver.lookup_timeout_ms,
            metrics=metrics,
        )
        self._transport = transport or TransportClient(self._config.transport, metrics=metrics)
        self._connections = connections or ConnectionManager(
            self._config.connection, handshake=handshake, metrics=metrics
        )
        self._actions = ActionDispatcher(
            self._transport, include_token_query=self._config.actions.include_token_query
        )
        self._logger = logging.getLogger(__name__)

    async def __aenter__(self) -> "Esp32Client":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def resolver(self) -> Resolver:
        return self._resolver

    async def resolve(self) -> ResolvedAddress:
        return await self._resolver.resolve(self._config.connection.host)

    async def connect(self) -> DeviceSession:
        """Resolve the device and open a session, retrying per the retry settings."""

        connection = self._config.connection
        resolved = await self.resolve()
        self._logger.info("ESP32 host: %s -> %s:%d", resolved.hostname, resolved.address, connection.port)
        try:
            return await connect_with_retry(
                lambda: self._connections.connect(resolved, connection.port, connection.connect_timeout_ms),
                retries=self._config.retry.retries,
                retry_delay_ms=self._config.retry.retry_delay_ms,
            )
        except ConnectError:
            if resolved.source_header_required:
                # the mDNS answer may be stale; look it up again next time
                self._resolver.invalidate(resolved.hostname)
            raise

    async def health(self) -> ActionResult:
        return await self._actions.health(await self.resolve())

    async def run_action(self, payload: Any, *, token: str | None = None) -> ActionResult:
        resolved = await self.resolve()
        return await self._actions.run_action(resolved, token or self._config.actions.token, payload)

    async def close(self) -> None:
        await self._transport.close()


async def connect_to_esp32(
    host: str = "esp32.local", port: int = 3030, timeout_ms: int = 10_000
) -> DeviceSession:
    """Resolve ``host`` and open a single session without retries."""

    resolved = await Resolver().resolve(host)
    manager = ConnectionManager(ConnectionConfig(host=host, port=port, connect_timeout_ms=timeout_ms))
    return await manager.connect(resolved)


__all__ = ["Esp32Client", "connect_to_esp32"]
