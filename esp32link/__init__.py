"""Top-level package for the ESP32 network client."""

from .client import Esp32Client, connect_to_esp32
from .config import DeviceConfig, load_config
from .main import run

__all__ = ["DeviceConfig", "Esp32Client", "connect_to_esp32", "load_config", "run"]
