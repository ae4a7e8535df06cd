"""Core primitives for grbl-relay."""

from .channels import ChannelClosed, Receiver, Selector, Sender, channel
from .effect import AlreadyDetachedError, EffectManager, EffectManagerStopped
from .protocols import Application, OutputParser, SerialCommandMap
from .runtime import EffectRuntime, EffectRuntimeError, Route

__all__ = [
    "AlreadyDetachedError",
    "Application",
    "ChannelClosed",
    "EffectManager",
    "EffectManagerStopped",
    "EffectRuntime",
    "EffectRuntimeError",
    "OutputParser",
    "Receiver",
    "Route",
    "Selector",
    "Sender",
    "SerialCommandMap",
    "channel",
]
