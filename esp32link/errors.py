"""Error taxonomy for device connectivity failures."""

from __future__ import annotations


class Esp32LinkError(Exception):
    """Base class for every failure raised by the connectivity core."""


class ResolutionError(Esp32LinkError):
    """A device hostname could not be resolved to an address."""


class ConnectError(Esp32LinkError):
    """The streaming session to the device could not be established."""


class ConnectTimeoutError(ConnectError, TimeoutError):
    """The device did not signal readiness before the connect timeout."""


class SessionClosedError(Esp32LinkError):
    """An operation was attempted on a session that is no longer ready."""


class TransportError(Esp32LinkError):
    """An HTTP request failed at the network level."""


class RequestTimeoutError(TransportError, TimeoutError):
    """An HTTP request did not complete within its timeout."""


__all__ = [
    "ConnectError",
    "ConnectTimeoutError",
    "Esp32LinkError",
    "RequestTimeoutError",
    "ResolutionError",
    "SessionClosedError",
    "TransportError",
]
