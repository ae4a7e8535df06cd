"""Serial effect manager.

Wraps a tty-like serial connection to the controller firmware. The manager
keeps at most one open port, reconnects with a fixed backoff, accumulates
inbound bytes for a pluggable :class:`~grbl_relay.core.OutputParser`, and
writes outbound data produced by a :class:`~grbl_relay.core.SerialCommandMap`.

Blocking pyserial calls run in worker threads so the event loop keeps
serving the other effect managers while the hardware is slow or absent.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, NoReturn, Optional, Protocol

import serial

from ..core import ChannelClosed, EffectManager, EffectManagerStopped
from ..core.protocols import OutputParser, SerialCommandMap

LOGGER = logging.getLogger(__name__)

DEFAULT_BACKOFF_SECONDS = 2.0
DEFAULT_POLL_SECONDS = 0.05
DEFAULT_READ_TIMEOUT_SECONDS = 0.05
DEFAULT_READ_SIZE = 1024


@dataclass(frozen=True, slots=True)
class SerialConfiguration:
    device: str
    baud: int

    def as_dict(self) -> dict[str, Any]:
        return {"device": self.device, "baud": self.baud}


@dataclass(frozen=True, slots=True)
class SerialControl:
    """Enable (clear the manual-disconnect latch) or disable the connection."""

    enable: bool


@dataclass(frozen=True, slots=True)
class SerialConfigure:
    config: SerialConfiguration


@dataclass(frozen=True, slots=True)
class SerialData:
    """Outbound data; ``str(payload)`` is written to the port verbatim."""

    payload: Any


class SerialPort(Protocol):
    @property
    def in_waiting(self) -> int: ...

    def read(self, size: int = 1) -> bytes: ...

    def write(self, data: bytes) -> Optional[int]: ...

    def close(self) -> None: ...


PortFactory = Callable[[SerialConfiguration, float], SerialPort]

_PORT_ERRORS = (serial.SerialException, OSError)


def open_serial_port(config: SerialConfiguration, read_timeout: float) -> SerialPort:
    """Open ``config.device`` with pyserial; blocking."""

    return serial.Serial(port=config.device, baudrate=config.baud, timeout=read_timeout)


def read_waiting(port: SerialPort, limit: int) -> bytes:
    """Read at most ``limit`` of the bytes already waiting, without blocking on more."""

    waiting = port.in_waiting
    if not waiting:
        return b""
    return port.read(min(limit, waiting))


class SerialEffectManager(EffectManager[Any, Any]):
    """Effect manager owning a single serial connection."""

    name = "serial"

    def __init__(
        self,
        config: Optional[SerialConfiguration],
        parser: OutputParser[Any],
        command_map: SerialCommandMap[Any, Any],
        *,
        port_factory: PortFactory = open_serial_port,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        read_timeout_seconds: float = DEFAULT_READ_TIMEOUT_SECONDS,
        read_size: int = DEFAULT_READ_SIZE,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(name=name)
        self._config = config
        self._parser = parser
        self._command_map = command_map
        self._port_factory = port_factory
        self._backoff_seconds = backoff_seconds
        self._poll_seconds = poll_seconds
        self._read_timeout_seconds = read_timeout_seconds
        self._read_size = read_size

        self._port: Optional[SerialPort] = None
        self._connected = False
        self._manual_disconnect = False
        self._buffer = bytearray()

    @property
    def config(self) -> Optional[SerialConfiguration]:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def manual_disconnect(self) -> bool:
        return self._manual_disconnect

    @property
    def buffered(self) -> bytes:
        return bytes(self._buffer)

    async def run(self) -> NoReturn:
        LOGGER.info("Serial effect manager starting (config=%s)", self._config)
        try:
            while True:
                await self.step()
        except ChannelClosed as exc:
            LOGGER.warning("Serial effect manager stopping: %s", exc)
            raise EffectManagerStopped(f"{self.name}: {exc}") from exc
        finally:
            port, self._port = self._port, None
            await self._close_port(port)

    async def step(self) -> None:
        """Run one iteration of the connection loop."""

        outbound = await self._take_command()
        await self._reconcile()

        port = self._port
        if port is None:
            await self._degrade(outbound)
            return

        try:
            chunk = await asyncio.to_thread(read_waiting, port, self._read_size)
        except _PORT_ERRORS as exc:
            LOGGER.warning("Unable to read from serial port: %s", exc)
            await self._degrade(outbound)
            return

        if chunk:
            self._buffer.extend(chunk)

        await self._parse_once()

        if outbound is not None:
            try:
                await asyncio.to_thread(port.write, outbound.encode("utf-8"))
            except _PORT_ERRORS as exc:
                LOGGER.warning("Unable to write %r to serial port: %s", outbound, exc)
                await self._drop_connection()

        await asyncio.sleep(self._poll_seconds)

    async def _take_command(self) -> Optional[str]:
        """Apply at most one queued command; return data to write, if any."""

        command = self._commands.try_recv()
        if command is None:
            return None

        translated = self._command_map.translate(command)
        if isinstance(translated, SerialControl):
            self._manual_disconnect = not translated.enable
            LOGGER.info(
                "Serial connection %s by request",
                "enabled" if translated.enable else "disabled",
            )
            if self._manual_disconnect:
                await self._drop_connection()
            return None

        if isinstance(translated, SerialConfigure):
            # A new configuration always asks for a fresh connection.
            LOGGER.info("Serial configuration updated to %s", translated.config)
            self._config = translated.config
            await self._drop_connection()
            return None

        if isinstance(translated, SerialData):
            return str(translated.payload)

        LOGGER.warning("Unable to map command %r to a serial command", command)
        return None

    async def _reconcile(self) -> None:
        if self._manual_disconnect or self._config is None:
            await self._drop_connection()
            return

        if self._port is not None:
            return

        self._port = await self._open_port(self._config)
        if self._port is not None and not self._connected:
            self._connected = True
            await self._publish(self._command_map.connected())

    async def _drop_connection(self) -> None:
        """Close the port and publish the disconnect edge if it was connected."""

        port, self._port = self._port, None
        await self._close_port(port)

        if self._connected:
            self._connected = False
            self._buffer.clear()
            await self._publish(self._command_map.disconnected())

    async def _degrade(self, dropped: Optional[str]) -> None:
        await self._drop_connection()

        if dropped is not None:
            LOGGER.warning("Dropping %r; serial connection unavailable", dropped)

        await asyncio.sleep(self._backoff_seconds)

    async def _parse_once(self) -> None:
        if not self._buffer:
            return

        parsed = self._parser.parse(bytes(self._buffer))
        if parsed is None:
            return

        message, consumed = parsed
        del self._buffer[:consumed]
        LOGGER.debug("Serial buffer after parse: %r", bytes(self._buffer))

        if message is not None:
            await self._publish(message)

    async def _open_port(self, config: SerialConfiguration) -> Optional[SerialPort]:
        try:
            port = await asyncio.to_thread(
                self._port_factory, config, self._read_timeout_seconds
            )
        except (*_PORT_ERRORS, ValueError) as exc:
            LOGGER.warning("Unable to open serial port %s: %s", config.device, exc)
            return None

        LOGGER.info("Opened serial port %s at %d baud", config.device, config.baud)
        return port

    async def _close_port(self, port: Optional[SerialPort]) -> None:
        if port is None:
            return
        try:
            await asyncio.to_thread(port.close)
        except _PORT_ERRORS:
            LOGGER.debug("Error closing serial port", exc_info=True)
