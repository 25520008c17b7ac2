"""Tests for the command-line entrypoint."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from esp32link import main as cli
from esp32link.datamodel import ActionResult, ResolvedAddress
from esp32link.errors import ConnectTimeoutError, TransportError
from esp32link.pins import SET_DIGITAL_PIN_VALUE, SET_PIN_MODE


class FakeSession:
    def __init__(self) -> None:
        self.writes: list[bytes] = []
        self.closed = False

    async def __aenter__(self) -> "FakeSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.closed = True

    def write(self, data: bytes) -> None:
        self.writes.append(data)


class FakeClient:
    """Stands in for :class:`Esp32Client` so commands run without a device."""

    instances: list["FakeClient"] = []
    health_result = ActionResult(status_code=200, body='{"status":"ok"}')
    error: Exception | None = None

    def __init__(self, config, **kwargs: Any) -> None:
        self.config = config
        self.kwargs = kwargs
        self.session = FakeSession()
        self.payloads: list[Any] = []
        FakeClient.instances.append(self)

    async def __aenter__(self) -> "FakeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        pass

    async def resolve(self) -> ResolvedAddress:
        return ResolvedAddress(self.config.connection.host, "192.0.2.5", 0.0, True)

    async def connect(self) -> FakeSession:
        if self.error is not None:
            raise self.error
        return self.session

    async def health(self) -> ActionResult:
        if self.error is not None:
            raise self.error
        return self.health_result

    async def run_action(self, payload: Any, *, token: str | None = None) -> ActionResult:
        self.payloads.append(payload)
        return ActionResult(status_code=202, body="accepted")


@pytest.fixture(autouse=True)
def fake_client(monkeypatch: pytest.MonkeyPatch) -> type[FakeClient]:
    for variable in ("ESP32_HOST", "ESP32_PORT", "ESP32_TIMEOUT_MS", "ESP32_TOKEN"):
        monkeypatch.delenv(variable, raising=False)
    FakeClient.instances = []
    FakeClient.error = None
    FakeClient.health_result = ActionResult(status_code=200, body='{"status":"ok"}')
    monkeypatch.setattr(cli, "Esp32Client", FakeClient)
    return FakeClient


def test_health_prints_status_and_body(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.run(["health", "--host", "192.0.2.5"]) == 0

    out = capsys.readouterr().out
    assert out.splitlines() == ["HTTP 200", '{"status":"ok"}']
    assert FakeClient.instances[0].config.connection.host == "192.0.2.5"


def test_unhealthy_device_exits_non_zero(fake_client: type[FakeClient]) -> None:
    fake_client.health_result = ActionResult(status_code=503, body="busy")

    assert cli.run(["health"]) == 1


def test_run_accepts_payload_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    payload_path = tmp_path / "job.json"
    payload_path.write_text(json.dumps({"job": "blink", "times": 3}))

    assert cli.run(["run", str(payload_path), "--token", "secret"]) == 0

    client = FakeClient.instances[0]
    assert client.payloads == [{"job": "blink", "times": 3}]
    assert client.config.actions.token == "secret"
    assert "HTTP 202" in capsys.readouterr().out


def test_run_accepts_json_literal() -> None:
    assert cli.run(["run", '{"job": "blink"}']) == 0

    assert FakeClient.instances[0].payloads == [{"job": "blink"}]


def test_run_rejects_invalid_json(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.run(["run", "{not json"]) == 1

    assert "Error: Invalid JSON payload" in capsys.readouterr().err


def test_core_errors_are_printed_and_exit_one(
    fake_client: type[FakeClient], capsys: pytest.CaptureFixture[str]
) -> None:
    fake_client.error = TransportError("GET http://192.0.2.5/health failed: refused")

    assert cli.run(["health"]) == 1

    assert capsys.readouterr().err.strip() == "Error: GET http://192.0.2.5/health failed: refused"


def test_led_on_drives_builtin_pin(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.run(["led", "on"]) == 0

    session = FakeClient.instances[0].session
    assert session.writes == [bytes([SET_PIN_MODE, 2, 1]), bytes([SET_DIGITAL_PIN_VALUE, 2, 1])]
    assert session.closed
    assert "LED turned on" in capsys.readouterr().out


def test_blink_toggles_until_duration_elapses() -> None:
    assert cli.run(["blink", "--duration", "0.05", "--interval", "10"]) == 0

    writes = FakeClient.instances[0].session.writes
    values = [data[2] for data in writes if data[0] == SET_DIGITAL_PIN_VALUE]
    assert len(values) >= 2
    assert values[0] == 1
    assert values[-1] == 0


def test_discover_reports_resolution(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.run(["discover", "--host", "esp32.local", "--port", "3031"]) == 0

    out = capsys.readouterr().out
    assert "ESP32 host: esp32.local → 192.0.2.5:3031" in out
    assert "Connection test complete" in out
    assert FakeClient.instances[0].session.writes[-1][:2] == bytes([0xF0, 0x7A])


def test_discover_connect_timeout_exits_one(
    fake_client: type[FakeClient], capsys: pytest.CaptureFixture[str]
) -> None:
    fake_client.error = ConnectTimeoutError("Connection timeout after 5000ms")

    assert cli.run(["discover"]) == 1

    assert "Connection timeout after 5000ms" in capsys.readouterr().err


def test_load_payload_prefers_existing_file(tmp_path: Path) -> None:
    payload_path = tmp_path / "payload.json"
    payload_path.write_text("[1, 2]")

    assert cli.load_payload(str(payload_path)) == [1, 2]
    assert cli.load_payload('"text"') == "text"
