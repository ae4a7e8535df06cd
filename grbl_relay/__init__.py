"""Relay between a GRBL motion controller and websocket UI clients."""

__version__ = "0.1.0"
