"""Effect managers owning the relay's I/O resources."""

from .gateway import (
    ClientConnected,
    ClientData,
    ClientDisconnected,
    ClientRegistry,
    FileUpload,
    GatewayEffectManager,
    SendTo,
)
from .serial import (
    SerialConfiguration,
    SerialConfigure,
    SerialControl,
    SerialData,
    SerialEffectManager,
    open_serial_port,
)
from .ticker import TickerEffectManager

__all__ = [
    "ClientConnected",
    "ClientData",
    "ClientDisconnected",
    "ClientRegistry",
    "FileUpload",
    "GatewayEffectManager",
    "SendTo",
    "SerialConfiguration",
    "SerialConfigure",
    "SerialControl",
    "SerialData",
    "SerialEffectManager",
    "TickerEffectManager",
    "open_serial_port",
]
