"""Base class for effect managers.

An effect manager owns one I/O resource. It publishes Messages (things that
happened) on one channel and consumes Commands (things the application wants
done) from another. The runtime-facing ends of both channels are handed over
exactly once through :meth:`EffectManager.detach`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Generic, NoReturn, Optional, TypeVar

from .channels import Receiver, Sender, channel

LOGGER = logging.getLogger(__name__)

M = TypeVar("M")
C = TypeVar("C")


class AlreadyDetachedError(RuntimeError):
    """Raised when an effect manager's channels are detached a second time."""


class EffectManagerStopped(RuntimeError):
    """Raised when an effect manager can no longer make progress."""


class EffectManager(ABC, Generic[M, C]):
    """Owns a Message-out / Command-in channel pair."""

    name = "effect"

    def __init__(self, *, name: Optional[str] = None) -> None:
        if name is not None:
            self.name = name

        message_sender, message_receiver = channel(f"{self.name}.messages")
        command_sender, command_receiver = channel(f"{self.name}.commands")

        self._messages: Sender[M] = message_sender
        self._commands: Receiver[C] = command_receiver
        self._detachable: Optional[tuple[Receiver[M], Sender[C]]] = (
            message_receiver,
            command_sender,
        )

    @property
    def detached(self) -> bool:
        return self._detachable is None

    def detach(self) -> tuple[Receiver[M], Sender[C]]:
        """Hand the message receiver and command sender to the caller.

        Raises:
            AlreadyDetachedError: If the channels were already handed out.
        """

        if self._detachable is None:
            raise AlreadyDetachedError(f"{self.name} channels already detached")

        handles, self._detachable = self._detachable, None
        return handles

    @abstractmethod
    async def run(self) -> NoReturn:
        """Run until the manager permanently stops.

        Implementations never return normally; they raise once a channel
        closes or the underlying resource is gone for good.
        """

    async def _publish(self, message: M) -> None:
        await self._messages.send(message)
