"""Fixed-delay retry around streaming session establishment."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed

from .errors import ConnectError

T = TypeVar("T")

_LOGGER = logging.getLogger(__name__)


async def connect_with_retry(
    connect: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    retry_delay_ms: int = 2000,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: logging.Logger = _LOGGER,
) -> T:
    """Call ``connect`` until it succeeds or ``retries`` attempts have failed.

    ``retries`` counts total attempts, so ``retries=1`` makes a single attempt.
    Attempts run one after another with a fixed ``retry_delay_ms`` between
    them and no delay after the last one. Only :class:`ConnectError` (and
    therefore :class:`ConnectTimeoutError`) is retried; the last one is
    re-raised unchanged once attempts run out.
    """

    if retries < 1:
        raise ValueError(f"retries must be at least 1, got {retries}")

    def log_failure(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome is not None else None
        logger.warning("Connection attempt %d/%d failed: %s", state.attempt_number, retries, exc)

    def log_retry(state: RetryCallState) -> None:
        logger.info("Retrying in %dms...", retry_delay_ms)

    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(retries),
        wait=wait_fixed(retry_delay_ms / 1000),
        retry=retry_if_exception_type(ConnectError),
        after=log_failure,
        before_sleep=log_retry,
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            return await connect()

    raise RuntimeError("Retry loop exited without an outcome")  # pragma: no cover


__all__ = ["connect_with_retry"]
