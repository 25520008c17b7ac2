"""Domain models shared by the resolver, transport and connection layers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True, slots=True)
class ResolvedAddress:
    """A hostname together with the literal address it resolved to."""

    hostname: str
    address: str
    resolved_at: float
    source_header_required: bool = False

    @property
    def host_header(self) -> str | None:
        """Value for the HTTP ``Host`` header, if the device needs one."""

        return self.hostname if self.source_header_required else None


@dataclass(frozen=True, slots=True)
class Endpoint:
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class SessionState(enum.Enum):
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """Published when a device session leaves the ready state."""

    endpoint: Endpoint
    remote: bool
    reason: str | None = None


@dataclass(slots=True)
class ActionRequest:
    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True, slots=True)
class ActionResult:
    """Raw HTTP status and body text returned by the device."""

    status_code: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


__all__ = [
    "ActionRequest",
    "ActionResult",
    "Endpoint",
    "ResolvedAddress",
    "SessionEvent",
    "SessionState",
]
