from __future__ import annotations

import time
from collections import deque
from typing import Deque, List, Optional, Union

import pytest
import serial

from grbl_relay.effects.serial import SerialConfiguration


class FakeSerialPort:
    """In-memory stand-in for ``serial.Serial``.

    Like pyserial, ``read(size)`` waits out the read timeout whenever fewer
    than ``size`` bytes are available.
    """

    def __init__(self, config: SerialConfiguration, timeout: float = 0.0) -> None:
        self.config = config
        self.timeout = timeout
        self.reads: Deque[Union[bytes, Exception]] = deque()
        self.written: List[bytes] = []
        self.write_error: Optional[Exception] = None
        self.closed = False

    def feed(self, data: bytes) -> None:
        self.reads.append(data)

    @property
    def in_waiting(self) -> int:
        if not self.reads:
            return 0
        item = self.reads[0]
        if isinstance(item, Exception):
            return 1
        return len(item)

    def read(self, size: int = 1) -> bytes:
        if not self.reads:
            time.sleep(self.timeout)
            return b""
        item = self.reads.popleft()
        if isinstance(item, Exception):
            raise item
        if len(item) < size:
            time.sleep(self.timeout)
        elif len(item) > size:
            self.reads.appendleft(item[size:])
        return item[:size]

    def write(self, data: bytes) -> int:
        if self.write_error is not None:
            raise self.write_error
        self.written.append(data)
        return len(data)

    def close(self) -> None:
        self.closed = True


class FakePortFactory:
    """Opens :class:`FakeSerialPort` instances, or fails while ``available`` is false."""

    def __init__(self, *, available: bool = True) -> None:
        self.available = available
        self.attempts: List[SerialConfiguration] = []
        self.ports: List[FakeSerialPort] = []

    @property
    def current(self) -> FakeSerialPort:
        return self.ports[-1]

    def __call__(self, config: SerialConfiguration, read_timeout: float) -> FakeSerialPort:
        self.attempts.append(config)
        if not self.available:
            raise serial.SerialException(f"could not open port {config.device}")
        port = FakeSerialPort(config, read_timeout)
        self.ports.append(port)
        return port


@pytest.fixture
def port_factory() -> FakePortFactory:
    return FakePortFactory()


@pytest.fixture
def serial_config() -> SerialConfiguration:
    return SerialConfiguration(device="/dev/ttyUSB0", baud=115200)
