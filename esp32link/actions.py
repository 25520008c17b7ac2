"""Named HTTP actions against the device's control surface."""

from __future__ import annotations

import json
from typing import Any

from yarl import URL

from .datamodel import ActionRequest, ActionResult, ResolvedAddress
from .transport import TransportClient

Target = ResolvedAddress | str


def make_base_url(address: str) -> str:
    """Return ``address`` as an HTTP base URL, prepending ``http://`` when it has no scheme."""

    if address.startswith(("http://", "https://")):
        return address
    return f"http://{address}"


def encode_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps({} if payload is None else payload, separators=(",", ":"))


class ActionDispatcher:
    """Builds ``/health`` and ``/run`` requests and hands them to the transport.

    Timeouts and cancellation belong to the transport; nothing here retries.
    """

    def __init__(
        self,
        transport: TransportClient,
        *,
        include_token_query: bool = False,
        timeout_ms: int | None = None,
    ) -> None:
        self._transport = transport
        self._include_token_query = include_token_query
        self._timeout_ms = timeout_ms

    async def health(self, target: Target) -> ActionResult:
        return await self._transport.send(self.build_health(target))

    async def run_action(self, target: Target, token: str | None, payload: Any) -> ActionResult:
        return await self._transport.send(self.build_run(target, token, payload))

    def build_health(self, target: Target) -> ActionRequest:
        base, headers = self._prepare(target)
        return ActionRequest(method="GET", url=f"{base}/health", headers=headers, timeout_ms=self._timeout_ms)

    def build_run(self, target: Target, token: str | None, payload: Any) -> ActionRequest:
        base, headers = self._prepare(target)
        url = URL(f"{base}/run")
        if self._include_token_query and token:
            url = url.update_query(token=token)
        headers["Content-Type"] = "application/json"
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return ActionRequest(
            method="POST",
            url=str(url),
            headers=headers,
            body=encode_payload(payload),
            timeout_ms=self._timeout_ms,
        )

    @staticmethod
    def _prepare(target: Target) -> tuple[str, dict[str, str]]:
        headers: dict[str, str] = {}
        if isinstance(target, ResolvedAddress):
            if target.host_header is not None:
                headers["Host"] = target.host_header.rstrip(".")
            return make_base_url(target.address), headers
        return make_base_url(target), headers


__all__ = ["ActionDispatcher", "encode_payload", "make_base_url"]
