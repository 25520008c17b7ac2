"""Persistent streaming-protocol sessions to the device."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .config import ConnectionConfig
from .datamodel import Endpoint, ResolvedAddress, SessionEvent, SessionState
from .errors import ConnectError, ConnectTimeoutError, SessionClosedError
from .metrics import MetricsRegistry

_LOGGER = logging.getLogger(__name__)

DataListener = Callable[[bytes], None]
EventListener = Callable[[SessionEvent], None]
ProtocolFactory = Callable[[], asyncio.Protocol]
TransportFactory = Callable[[ProtocolFactory, str, int], Awaitable[tuple[asyncio.BaseTransport, asyncio.Protocol]]]
Handshake = Callable[["DeviceSession"], Awaitable[None]]


class _SessionProtocol(asyncio.Protocol):
    """Forwards transport callbacks to the owning session."""

    def __init__(self, session: "DeviceSession") -> None:
        self._session = session

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._session._attach(transport)

    def data_received(self, data: bytes) -> None:
        self._session._deliver(data)

    def connection_lost(self, exc: Exception | None) -> None:
        self._session._lost(exc)


class DeviceSession:
    """Handle on one streaming-protocol connection.

    The session does not interpret the byte stream; it hands received data to
    registered listeners and writes whatever the protocol layer gives it.
    Listeners registered with :meth:`add_listener` receive a
    :class:`SessionEvent` when the session closes, whether the peer dropped
    the connection or :meth:`disconnect` was called.
    """

    def __init__(self, endpoint: Endpoint) -> None:
        self.endpoint = endpoint
        self._state = SessionState.CONNECTING
        self._transport: asyncio.BaseTransport | None = None
        self._data_listeners: list[DataListener] = []
        self._listeners: list[EventListener] = []
        self._closed = asyncio.Event()

    async def __aenter__(self) -> "DeviceSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.disconnect()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is SessionState.READY

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def add_data_listener(self, listener: DataListener) -> None:
        self._data_listeners.append(listener)

    def remove_data_listener(self, listener: DataListener) -> None:
        if listener in self._data_listeners:
            self._data_listeners.remove(listener)

    def write(self, data: bytes) -> None:
        if self._state in (SessionState.CLOSED, SessionState.FAILED) or self._transport is None:
            raise SessionClosedError(f"Session to {self.endpoint} is closed")
        if self._transport.is_closing():
            raise SessionClosedError(f"Session to {self.endpoint} is closing")
        self._transport.write(data)  # type: ignore[attr-defined]

    def disconnect(self) -> None:
        """Close the session. Calling this on a session that is not ready does nothing."""

        if self._state is not SessionState.READY:
            return
        self._state = SessionState.CLOSED
        if self._transport is not None:
            self._transport.close()
        _LOGGER.info("Disconnected from ESP32 at %s", self.endpoint)
        self._publish(SessionEvent(self.endpoint, remote=False))

    async def wait_closed(self) -> SessionState:
        await self._closed.wait()
        return self._state

    def _attach(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport

    def _mark_ready(self) -> None:
        if self._state is SessionState.CONNECTING:
            self._state = SessionState.READY

    def _fail(self) -> None:
        self._state = SessionState.FAILED
        if self._transport is not None:
            self._transport.close()
        self._closed.set()

    def _deliver(self, data: bytes) -> None:
        for listener in list(self._data_listeners):
            listener(data)

    def _lost(self, exc: Exception | None) -> None:
        was_ready = self._state is SessionState.READY
        if was_ready:
            self._state = SessionState.CLOSED
        elif self._state is SessionState.CONNECTING:
            self._state = SessionState.FAILED
        self._closed.set()
        if was_ready:
            reason = str(exc) if exc is not None else "closed by peer"
            _LOGGER.warning("ESP32 board disconnected: %s (%s)", self.endpoint, reason)
            self._publish(SessionEvent(self.endpoint, remote=True, reason=reason))

    def _publish(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _LOGGER.exception("Session listener failed for %s", self.endpoint)


class ConnectionManager:
    """Opens streaming sessions to the device within a connect timeout.

    ``transport_factory`` has the signature of
    :meth:`asyncio.loop.create_connection` and defaults to it. An optional
    ``handshake`` coroutine runs on the new session before it is considered
    ready; it shares the connect timeout with the transport setup.
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        *,
        transport_factory: TransportFactory | None = None,
        handshake: Handshake | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._config = config or ConnectionConfig()
        self._transport_factory = transport_factory
        self._handshake = handshake
        self._metrics = metrics

    async def connect(
        self,
        address: str | ResolvedAddress,
        port: int | None = None,
        connect_timeout_ms: int | None = None,
    ) -> DeviceSession:
        host = address.address if isinstance(address, ResolvedAddress) else address
        endpoint = Endpoint(host, port or self._config.port)
        timeout_ms = connect_timeout_ms or self._config.connect_timeout_ms
        session = DeviceSession(endpoint)
        factory = self._transport_factory or asyncio.get_running_loop().create_connection

        _LOGGER.info("Connecting to ESP32 at %s...", endpoint)
        try:
            async with asyncio.timeout(timeout_ms / 1000):
                await factory(lambda: _SessionProtocol(session), endpoint.host, endpoint.port)
                if self._handshake is not None:
                    await self._run_handshake(session)
        except TimeoutError as exc:
            session._fail()
            self._count("timeout")
            raise ConnectTimeoutError(f"Connection timeout after {timeout_ms}ms") from exc
        except (OSError, ConnectError) as exc:
            session._fail()
            self._count("error")
            raise ConnectError(f"Board connection failed: {exc}") from exc
        except asyncio.CancelledError:
            session._fail()
            raise

        if session.state is not SessionState.CONNECTING:
            session._fail()
            self._count("error")
            raise ConnectError(f"Board connection failed: {endpoint} closed during handshake")
        session._mark_ready()
        self._count("success")
        _LOGGER.info("ESP32 board connected at %s", endpoint)
        return session

    async def _run_handshake(self, session: DeviceSession) -> None:
        """Run the handshake, failing as soon as the peer closes the connection."""

        handshake = asyncio.ensure_future(self._handshake(session))
        closed = asyncio.ensure_future(session.wait_closed())
        try:
            done, _ = await asyncio.wait({handshake, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closed.cancel()
            handshake.cancel()
        if closed in done or handshake not in done:
            raise ConnectError(f"{session.endpoint} closed during handshake")
        try:
            handshake.result()
        except ConnectError:
            raise
        except Exception as exc:
            raise ConnectError(f"handshake with {session.endpoint} failed: {exc}") from exc

    def _count(self, status: str) -> None:
        if self._metrics is not None:
            self._metrics.connect_attempts_total.labels(status=status).inc()


__all__ = ["ConnectionManager", "DeviceSession"]
