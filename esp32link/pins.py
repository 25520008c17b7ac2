"""Minimal Firmata commands used by the command-line tools.

Only the handful of messages needed to check the board and drive a digital
output are encoded here; richer pin work belongs to a full Firmata library
layered on :class:`~esp32link.connection.DeviceSession`.
"""

from __future__ import annotations

import asyncio

from .connection import DeviceSession

REPORT_VERSION = 0xF9
SET_PIN_MODE = 0xF4
SET_DIGITAL_PIN_VALUE = 0xF5
START_SYSEX = 0xF0
END_SYSEX = 0xF7
SAMPLING_INTERVAL = 0x7A

OUTPUT = 0x01
BUILTIN_LED = 2


async def firmata_handshake(session: DeviceSession) -> None:
    """Query the firmware version and wait for the board to answer."""

    answered: asyncio.Future[None] = asyncio.get_running_loop().create_future()
    received = bytearray()

    def on_data(data: bytes) -> None:
        received.extend(data)
        start = received.find(REPORT_VERSION)
        if start != -1 and len(received) - start >= 3 and not answered.done():
            answered.set_result(None)

    session.add_data_listener(on_data)
    try:
        session.write(bytes([REPORT_VERSION]))
        await answered
    finally:
        session.remove_data_listener(on_data)


def sampling_interval(session: DeviceSession, interval_ms: int) -> None:
    session.write(
        bytes([START_SYSEX, SAMPLING_INTERVAL, interval_ms & 0x7F, (interval_ms >> 7) & 0x7F, END_SYSEX])
    )


class Led:
    """A digital output driven through a device session."""

    def __init__(self, session: DeviceSession, pin: int = BUILTIN_LED) -> None:
        self._session = session
        self.pin = pin
        self.is_on = False
        session.write(bytes([SET_PIN_MODE, pin, OUTPUT]))

    def on(self) -> None:
        self._set(True)

    def off(self) -> None:
        self._set(False)

    def toggle(self) -> None:
        self._set(not self.is_on)

    def _set(self, value: bool) -> None:
        self._session.write(bytes([SET_DIGITAL_PIN_VALUE, self.pin, int(value)]))
        self.is_on = value


__all__ = ["BUILTIN_LED", "Led", "firmata_handshake", "sampling_interval"]
