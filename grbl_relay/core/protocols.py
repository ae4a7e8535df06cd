"""Protocol definitions shared by the runtime, effect managers and applications."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence, TypeVar

M = TypeVar("M")
C = TypeVar("C")
F = TypeVar("F", contravariant=True)
MessageT = TypeVar("MessageT", covariant=True)

A = TypeVar("A", bound="Application")


class Application(Protocol[M, C, F]):
    """Pure state machine driven by the effect runtime.

    Neither method may perform I/O or block. The runtime keeps only the
    object returned from each call and never shares it with another task.
    """

    def init(self: A, flags: F) -> tuple[A, Sequence[C]]:
        """Apply startup configuration and return the initial commands."""
        ...

    def update(self: A, message: M) -> tuple[A, Sequence[C]]:
        """Apply one message and return the commands it produces."""
        ...


class OutputParser(Protocol[MessageT]):
    """Turns accumulated serial bytes into application messages."""

    def parse(self, data: bytes) -> Optional[tuple[Optional[MessageT], int]]:
        """Decode at most one frame from the front of ``data``.

        Returns:
            ``None`` when no complete frame is buffered yet, otherwise
            ``(message, consumed)`` where ``consumed`` is the positive number
            of bytes to discard and ``message`` is ``None`` when the frame
            was unusable.
        """
        ...


class SerialCommandMap(Protocol[C, M]):
    """Application glue for the serial effect manager."""

    def translate(self, command: C) -> Optional[object]:
        """Map an application command to a serial effect command."""
        ...

    def connected(self) -> M:
        """Message published when a serial connection is established."""
        ...

    def disconnected(self) -> M:
        """Message published when an established serial connection is lost."""
        ...
