"""Entrypoint wiring for the ``esp32`` command-line tool."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

import structlog

from .client import Esp32Client
from .config import DeviceConfig, parse_args, resolve_cli_config
from .datamodel import ActionResult
from .errors import Esp32LinkError
from .metrics import MetricsRegistry
from .pins import Led, firmata_handshake, sampling_interval
from .utils.logging import configure_logging

_LOGGER = structlog.get_logger(__name__)


def load_payload(raw: str) -> Any:
    """Interpret ``raw`` as a path to a JSON file if one exists, else as a JSON literal."""

    try:
        is_file = Path(raw).is_file()
    except OSError:
        # long JSON literals are not valid path names on every platform
        is_file = False
    text = Path(raw).read_text() if is_file else raw
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON payload: {exc}") from exc


async def _discover(client: Esp32Client, args: argparse.Namespace) -> int:
    resolved = await client.resolve()
    print(f"ESP32 host: {resolved.hostname} → {resolved.address}:{client.config.connection.port}")
    async with await client.connect() as session:
        print("✓ ESP32 discovered and connected via Firmata")
        sampling_interval(session, 1000)
    print("Connection test complete")
    return 0


async def _blink(client: Esp32Client, args: argparse.Namespace) -> int:
    async with await client.connect() as session:
        led = Led(session)
        print("Starting blink sequence...")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + args.duration
        while loop.time() < deadline:
            led.toggle()
            await asyncio.sleep(args.interval / 1000)
        led.off()
    print("Blink sequence complete")
    return 0


async def _led(client: Esp32Client, args: argparse.Namespace) -> int:
    async with await client.connect() as session:
        led = Led(session)
        getattr(led, args.action)()
        messages = {"on": "LED turned on", "off": "LED turned off", "toggle": "LED toggled"}
        print(messages[args.action])
    return 0


async def _health(client: Esp32Client, args: argparse.Namespace) -> int:
    return _report(await client.health())


async def _run(client: Esp32Client, args: argparse.Namespace) -> int:
    return _report(await client.run_action(load_payload(args.payload)))


def _report(result: ActionResult) -> int:
    print(f"HTTP {result.status_code}")
    if result.body:
        print(result.body)
    return 0 if result.ok else 1


_COMMANDS = {
    "discover": _discover,
    "blink": _blink,
    "led": _led,
    "health": _health,
    "run": _run,
}


async def _run_async(args: argparse.Namespace, config: DeviceConfig) -> int:
    metrics = None
    if args.metrics_port is not None:
        metrics = MetricsRegistry(port=args.metrics_port)
        metrics.start_exporter()
    _LOGGER.info("esp32.command", command=args.command, host=config.connection.host)
    async with Esp32Client(config, handshake=firmata_handshake, metrics=metrics) as client:
        return await _COMMANDS[args.command](client, args)


def run(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        config = resolve_cli_config(args)
        return asyncio.run(_run_async(args, config))
    except (Esp32LinkError, ValueError, OSError) as exc:
        _LOGGER.debug("esp32.failed", command=args.command, error=repr(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":  # pragma: no cover
    main()
