"""Configuration parsing and validation for the device client."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Any, Iterable, Mapping, MutableMapping

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_HOST = "esp32.local"
DEFAULT_PORT = 3030
CLI_CONNECT_TIMEOUT_MS = 5000


class ResolverConfig(BaseModel):
    """Settings for hostname resolution and its cache."""

    ttl_seconds: float = Field(300.0, gt=0.0, description="Lifetime of a cached local-segment lookup")
    lookup_timeout_ms: int = Field(3000, gt=0, description="Upper bound for a single name-service lookup")


class TransportConfig(BaseModel):
    """Settings for the pooled HTTP transport."""

    timeout_ms: int = Field(5000, gt=0, description="Wall-clock timeout of one HTTP request")
    max_connections: int = Field(4, ge=1, description="Concurrent connections kept to the device")


class ConnectionConfig(BaseModel):
    """Settings for the streaming-protocol session."""

    host: str = Field(DEFAULT_HOST, min_length=1, description="Device hostname or address")
    port: int = Field(DEFAULT_PORT, ge=1, le=65535, description="Streaming protocol TCP port")
    connect_timeout_ms: int = Field(10_000, gt=0, description="Time allowed for the device to become ready")


class RetryConfig(BaseModel):
    """Settings for repeated connection attempts."""

    retries: int = Field(3, ge=1, description="Total number of connection attempts")
    retry_delay_ms: int = Field(2000, ge=0, description="Fixed delay between attempts")


class ActionConfig(BaseModel):
    token: str | None = Field(None, description="Bearer token sent with run actions")
    include_token_query: bool = Field(
        False, description="Also send the token as a ?token= query parameter"
    )

    @field_validator("token")
    @classmethod
    def _empty_token_is_none(cls, token: str | None) -> str | None:
        return token or None


class DeviceConfig(BaseModel):
    """Top level configuration model for talking to one device."""

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    actions: ActionConfig = Field(default_factory=ActionConfig)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the ``esp32`` entrypoint."""

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--host", help="Device hostname or IP (env ESP32_HOST)")
    common.add_argument("--port", type=int, help="Streaming protocol port (env ESP32_PORT)")
    common.add_argument("--timeout", type=int, help="Timeout in milliseconds (env ESP32_TIMEOUT_MS)")
    common.add_argument("--token", help="Bearer token for run actions (env ESP32_TOKEN)")
    common.add_argument("--retries", type=int, help="Total connection attempts")
    common.add_argument("--retry-delay", type=int, dest="retry_delay", help="Delay between attempts in ms")
    common.add_argument(
        "--token-query",
        action="store_true",
        default=None,
        dest="token_query",
        help="Also send the token as a query parameter",
    )
    common.add_argument("--config", type=Path, help="Optional YAML or JSON configuration file")
    common.add_argument(
        "--override",
        type=str,
        action="append",
        default=[],
        help="Override configuration values (dot.separated=value)",
    )
    common.add_argument("--log-level", default="WARNING", dest="log_level", help="Logging level")
    common.add_argument("--metrics-port", type=int, dest="metrics_port", help="Expose Prometheus metrics")

    parser = argparse.ArgumentParser(prog="esp32", description="Control an ESP32 over the local network")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("discover", parents=[common], help="Resolve and connect to the device")
    blink = commands.add_parser("blink", parents=[common], help="Blink the built-in LED")
    blink.add_argument("--duration", type=float, default=10.0, help="Seconds to blink for")
    blink.add_argument("--interval", type=int, default=500, help="Toggle interval in ms")
    led = commands.add_parser("led", parents=[common], help="Switch the built-in LED")
    led.add_argument("action", choices=["on", "off", "toggle"], nargs="?", default="toggle")
    commands.add_parser("health", parents=[common], help="Query the device health endpoint")
    run = commands.add_parser("run", parents=[common], help="Submit a job to the device")
    run.add_argument("payload", help="JSON literal or path to a JSON file")
    return parser.parse_args(list(argv) if argv is not None else None)


def load_config(path: Path | None = None, *, overrides: Iterable[str] | None = None) -> DeviceConfig:
    """Load a :class:`DeviceConfig` from ``path`` applying optional overrides."""

    raw: Mapping[str, Any] = _read_config_file(path) if path is not None else {}
    mutable = _ensure_mutable(raw)
    for override in overrides or []:
        _apply_override(mutable, override)
    try:
        return DeviceConfig.model_validate(mutable)
    except ValidationError as exc:
        raise ValueError(f"Invalid device configuration: {exc}") from exc


def resolve_cli_config(
    args: argparse.Namespace, environ: Mapping[str, str] | None = None
) -> DeviceConfig:
    """Build the effective configuration for a CLI invocation.

    Precedence is command-line flags, then ``ESP32_*`` environment variables,
    then the configuration file and its overrides, then model defaults. The
    CLI uses a shorter connect timeout than the library default, and its
    ``--timeout`` bounds HTTP requests as well as the session handshake.
    """

    env = os.environ if environ is None else environ
    config = load_config(args.config, overrides=args.override)
    data = config.model_dump()
    if "connect_timeout_ms" not in config.connection.model_fields_set:
        data["connection"]["connect_timeout_ms"] = CLI_CONNECT_TIMEOUT_MS

    for variable, keys in _ENV_KEYS.items():
        value = env.get(variable)
        if value:
            for key in keys:
                _set_path(data, key, value)

    flags = {
        ("connection.host",): args.host,
        ("connection.port",): args.port,
        ("connection.connect_timeout_ms", "transport.timeout_ms"): args.timeout,
        ("actions.token",): args.token,
        ("retry.retries",): args.retries,
        ("retry.retry_delay_ms",): args.retry_delay,
        ("actions.include_token_query",): args.token_query,
    }
    for keys, value in flags.items():
        if value is not None:
            for key in keys:
                _set_path(data, key, value)

    try:
        return DeviceConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(f"Invalid device configuration: {exc}") from exc


_ENV_KEYS = {
    "ESP32_HOST": ("connection.host",),
    "ESP32_PORT": ("connection.port",),
    "ESP32_TIMEOUT_MS": ("connection.connect_timeout_ms", "transport.timeout_ms"),
    "ESP32_TOKEN": ("actions.token",),
}


def _read_config_file(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file '{path}' does not exist")
    content = path.read_text()
    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(content)
    else:
        data = json.loads(content)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError("Configuration root must be a mapping")
    return data


def _ensure_mutable(data: Mapping[str, Any]) -> MutableMapping[str, Any]:
    return json.loads(json.dumps(data))


def _apply_override(target: MutableMapping[str, Any], assignment: str) -> None:
    if "=" not in assignment:
        raise ValueError(f"Invalid override '{assignment}', expected key=value format")
    key, raw_value = assignment.split("=", 1)
    _set_path(target, key, _coerce_override_value(raw_value))


def _set_path(target: MutableMapping[str, Any], key: str, value: Any) -> None:
    keys = key.split(".")
    cursor: MutableMapping[str, Any] = target
    for part in keys[:-1]:
        node = cursor.setdefault(part, {})
        if not isinstance(node, MutableMapping):
            raise ValueError(f"Cannot override '{key}' because '{part}' is not a mapping")
        cursor = node
    cursor[keys[-1]] = value


def _coerce_override_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    try:
        return int(raw)
    except ValueError:
        try:
            return float(raw)
        except ValueError:
            return raw


__all__ = [
    "ActionConfig",
    "ConnectionConfig",
    "DeviceConfig",
    "ResolverConfig",
    "RetryConfig",
    "TransportConfig",
    "load_config",
    "parse_args",
    "resolve_cli_config",
]
