"""Configuration loader for grbl-relay."""

from __future__ import annotations

from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants
from .effects.serial import SerialConfiguration


class ConfigurationError(RuntimeError):
    """Raised when the configuration file holds an unusable value."""


@dataclass(slots=True)
class GatewayConfig:
    host: str = constants.DEFAULT_GATEWAY_HOST
    port: int = constants.DEFAULT_GATEWAY_PORT


@dataclass(slots=True)
class TimingConfig:
    broadcast_interval_seconds: float = 2.0
    tick_interval_seconds: float = 0.05
    serial_backoff_seconds: float = 2.0
    serial_poll_seconds: float = 0.05
    serial_read_timeout_seconds: float = 0.05
    idle_ping_seconds: float = 3.0
    runtime_receive_timeout_seconds: float = 0.1


@dataclass(slots=True)
class ApplicationConfig:
    history_limit: int = 100


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class RelayConfig:
    gateway: GatewayConfig
    serial: Optional[SerialConfiguration]
    timing: TimingConfig
    application: ApplicationConfig
    logging: LoggingConfig
    raw: ConfigParser
    path: Path


def _positive_float(parser: ConfigParser, section: str, option: str) -> float:
    try:
        value = parser.getfloat(section, option)
    except ValueError as exc:
        raise ConfigurationError(f"[{section}] {option} must be a number") from exc
    if value <= 0:
        raise ConfigurationError(f"[{section}] {option} must be positive, got {value}")
    return value


def _int(parser: ConfigParser, section: str, option: str, *, minimum: int) -> int:
    try:
        value = parser.getint(section, option)
    except ValueError as exc:
        raise ConfigurationError(f"[{section}] {option} must be an integer") from exc
    if value < minimum:
        raise ConfigurationError(
            f"[{section}] {option} must be at least {minimum}, got {value}"
        )
    return value


def load_config(path: Optional[Path] = None) -> RelayConfig:
    """Load configuration from disk, applying defaults where necessary.

    A missing file yields the defaults. Serial stays disabled unless
    ``[serial] device`` is set.

    Raises:
        ConfigurationError: If a numeric option is malformed or out of range.
    """

    config_path = path or constants.DEFAULT_CONFIG_PATH
    timing_defaults = TimingConfig()
    parser = ConfigParser()
    parser.read_dict(
        {
            "gateway": {
                "host": constants.DEFAULT_GATEWAY_HOST,
                "port": str(constants.DEFAULT_GATEWAY_PORT),
            },
            "serial": {
                "device": "",
                "baud": str(constants.DEFAULT_SERIAL_BAUD),
            },
            "timing": {
                "broadcast_interval_seconds": str(timing_defaults.broadcast_interval_seconds),
                "tick_interval_seconds": str(timing_defaults.tick_interval_seconds),
                "serial_backoff_seconds": str(timing_defaults.serial_backoff_seconds),
                "serial_poll_seconds": str(timing_defaults.serial_poll_seconds),
                "serial_read_timeout_seconds": str(
                    timing_defaults.serial_read_timeout_seconds
                ),
                "idle_ping_seconds": str(timing_defaults.idle_ping_seconds),
                "runtime_receive_timeout_seconds": str(
                    timing_defaults.runtime_receive_timeout_seconds
                ),
            },
            "application": {
                "history_limit": str(ApplicationConfig().history_limit),
            },
            "logging": {
                "level": "INFO",
                "path": "",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    gateway = GatewayConfig(
        host=parser.get("gateway", "host"),
        port=_int(parser, "gateway", "port", minimum=0),
    )

    serial: Optional[SerialConfiguration] = None
    device = parser.get("serial", "device").strip()
    if device:
        serial = SerialConfiguration(
            device=device, baud=_int(parser, "serial", "baud", minimum=1)
        )

    timing = TimingConfig(
        **{
            option: _positive_float(parser, "timing", option)
            for option in (
                "broadcast_interval_seconds",
                "tick_interval_seconds",
                "serial_backoff_seconds",
                "serial_poll_seconds",
                "serial_read_timeout_seconds",
                "idle_ping_seconds",
                "runtime_receive_timeout_seconds",
            )
        }
    )

    application = ApplicationConfig(
        history_limit=_int(parser, "application", "history_limit", minimum=1),
    )

    log_path_value = parser.get("logging", "path").strip()
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    return RelayConfig(
        gateway=gateway,
        serial=serial,
        timing=timing,
        application=application,
        logging=logging_config,
        raw=parser,
        path=config_path,
    )
