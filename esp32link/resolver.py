"""Hostname resolution with a TTL cache for local-segment device names."""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from collections.abc import Awaitable, Callable

from .datamodel import ResolvedAddress
from .errors import ResolutionError
from .metrics import MetricsRegistry

LOCAL_SUFFIXES = (".local", ".local.")

Clock = Callable[[], float]
LookupFn = Callable[[str], Awaitable[str]]


def is_local_hostname(hostname: str) -> bool:
    return hostname.lower().endswith(LOCAL_SUFFIXES)


class ResolutionCache:
    """Maps hostnames to their last successful resolution.

    Entries are replaced, never mutated, and expire ``ttl`` seconds after
    they were stored according to ``clock``.
    """

    def __init__(self, ttl: float = 300.0, *, clock: Clock = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, ResolvedAddress] = {}

    def now(self) -> float:
        return self._clock()

    def get(self, hostname: str) -> ResolvedAddress | None:
        entry = self._entries.get(hostname)
        if entry is None or self._clock() - entry.resolved_at >= self._ttl:
            return None
        return entry

    def put(self, entry: ResolvedAddress) -> None:
        self._entries[entry.hostname] = entry

    def invalidate(self, hostname: str) -> None:
        self._entries.pop(hostname, None)

    def __contains__(self, hostname: object) -> bool:
        return isinstance(hostname, str) and self.get(hostname) is not None

    def __len__(self) -> int:
        return len(self._entries)


async def lookup_ipv4(hostname: str) -> str:
    """Return the first IPv4 address the system resolver reports for ``hostname``."""

    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, family=socket.AF_INET, type=socket.SOCK_STREAM)
    if not infos:
        raise OSError(f"No IPv4 address found for {hostname}")
    return infos[0][4][0]


class Resolver:
    """Resolves device hostnames, caching local-segment lookups."""

    def __init__(
        self,
        cache: ResolutionCache | None = None,
        *,
        lookup: LookupFn = lookup_ipv4,
        lookup_timeout_ms: int = 3000,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self._cache = cache if cache is not None else ResolutionCache()
        self._lookup = lookup
        self._lookup_timeout = lookup_timeout_ms / 1000
        self._metrics = metrics
        self._in_flight: dict[str, asyncio.Task[ResolvedAddress]] = {}
        self._logger = logging.getLogger(__name__)

    @property
    def cache(self) -> ResolutionCache:
        return self._cache

    async def resolve(self, hostname: str) -> ResolvedAddress:
        if not is_local_hostname(hostname):
            self._record("passthrough")
            return ResolvedAddress(hostname=hostname, address=hostname, resolved_at=self._cache.now())

        cached = self._cache.get(hostname)
        if cached is not None:
            self._record("hit")
            return cached

        lookup = self._in_flight.get(hostname)
        if lookup is None:
            self._record("miss")
            lookup = asyncio.ensure_future(self._lookup_and_store(hostname))
            self._in_flight[hostname] = lookup
            lookup.add_done_callback(lambda done: self._forget_lookup(hostname, done))
        else:
            self._record("joined")
        # the lookup belongs to the resolver; a cancelled caller leaves it running for the others
        return await asyncio.shield(lookup)

    def invalidate(self, hostname: str) -> None:
        """Forget a cached resolution, e.g. after the device stopped answering."""

        self._cache.invalidate(hostname)

    async def _lookup_and_store(self, hostname: str) -> ResolvedAddress:
        try:
            async with asyncio.timeout(self._lookup_timeout):
                address = await self._lookup(hostname)
        except TimeoutError as exc:
            raise ResolutionError(
                f"Timed out resolving {hostname} after {int(self._lookup_timeout * 1000)}ms"
            ) from exc
        except (OSError, ValueError) as exc:
            raise ResolutionError(f"Unable to resolve {hostname}: {exc}") from exc

        resolved = ResolvedAddress(
            hostname=hostname,
            address=address,
            resolved_at=self._cache.now(),
            source_header_required=True,
        )
        self._cache.put(resolved)
        self._logger.debug("Resolved %s to %s", hostname, address)
        return resolved

    def _forget_lookup(self, hostname: str, lookup: asyncio.Task[ResolvedAddress]) -> None:
        if self._in_flight.get(hostname) is lookup:
            del self._in_flight[hostname]
        if not lookup.cancelled():
            # failures nobody awaited would otherwise be logged by the loop
            lookup.exception()

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.resolutions_total.labels(outcome=outcome).inc()


__all__ = ["LOCAL_SUFFIXES", "ResolutionCache", "Resolver", "is_local_hostname", "lookup_ipv4"]
