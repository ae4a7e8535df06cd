"""Constants used across the grbl-relay package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "grbl-relay"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_GATEWAY_HOST = "127.0.0.1"
DEFAULT_GATEWAY_PORT = 8080

DEFAULT_SERIAL_BAUD = 115200
