"""Closable asyncio channels and a first-ready selector.

Channels carry Messages and Commands between effect managers and the
runtime. They behave like unbounded queues with one extra property: either
end can close the channel, after which sends fail immediately and receives
fail once the already-queued items have been drained.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Generic, Optional, Sequence, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_CLOSED = object()


class ChannelClosed(RuntimeError):
    """Raised when sending to or receiving from a closed channel."""

    def __init__(self, name: str, *, index: Optional[int] = None) -> None:
        super().__init__(f"channel '{name}' is closed")
        self.name = name
        self.index = index


class _ChannelState(Generic[T]):
    __slots__ = ("name", "queue", "closed")

    def __init__(self, name: str) -> None:
        self.name = name
        self.queue: asyncio.Queue[object] = asyncio.Queue()
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.queue.put_nowait(_CLOSED)


class Sender(Generic[T]):
    """Sending end of a channel."""

    __slots__ = ("_state",)

    def __init__(self, state: _ChannelState[T]) -> None:
        self._state = state

    @property
    def name(self) -> str:
        return self._state.name

    @property
    def closed(self) -> bool:
        return self._state.closed

    async def send(self, item: T) -> None:
        if self._state.closed:
            raise ChannelClosed(self._state.name)
        await self._state.queue.put(item)

    def close(self) -> None:
        self._state.close()


class Receiver(Generic[T]):
    """Receiving end of a channel."""

    __slots__ = ("_state",)

    def __init__(self, state: _ChannelState[T]) -> None:
        self._state = state

    @property
    def name(self) -> str:
        return self._state.name

    @property
    def closed(self) -> bool:
        return self._state.closed

    async def recv(self) -> T:
        item = await self._state.queue.get()
        if item is _CLOSED:
            # Leave the marker in place so every later receive fails as well.
            self._state.queue.put_nowait(_CLOSED)
            raise ChannelClosed(self._state.name)
        return item  # type: ignore[return-value]

    def try_recv(self) -> Optional[T]:
        """Return the next queued item, or ``None`` when nothing is waiting."""

        try:
            item = self._state.queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        if item is _CLOSED:
            self._state.queue.put_nowait(_CLOSED)
            raise ChannelClosed(self._state.name)
        return item  # type: ignore[return-value]

    def close(self) -> None:
        self._state.close()


def channel(name: str) -> tuple[Sender[T], Receiver[T]]:
    """Create an unbounded channel and return its ``(sender, receiver)`` ends."""

    state: _ChannelState[T] = _ChannelState(name)
    return Sender(state), Receiver(state)


class Selector(Generic[T]):
    """Waits on several receivers and yields whichever delivers first.

    One receive task is kept outstanding per receiver across calls, so an
    item that arrives while another receiver wins (or while a timeout
    expires) is held for a later call instead of being lost. When several
    receivers are ready at once the lowest index wins.
    """

    def __init__(self, receivers: Sequence[Receiver[T]]) -> None:
        self._receivers = list(receivers)
        self._pending: dict[int, asyncio.Task[T]] = {}

    def __len__(self) -> int:
        return len(self._receivers)

    async def next(self, timeout: Optional[float] = None) -> Optional[tuple[int, T]]:
        """Return ``(index, item)`` for the first ready receiver.

        Returns ``None`` when ``timeout`` elapses with nothing ready.

        Raises:
            ChannelClosed: If the first ready receiver is closed; ``index``
                identifies which one.
        """

        if not self._receivers:
            if timeout is not None:
                await asyncio.sleep(timeout)
            return None

        for index, receiver in enumerate(self._receivers):
            if index not in self._pending:
                self._pending[index] = asyncio.ensure_future(receiver.recv())

        done, _ = await asyncio.wait(
            self._pending.values(),
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if not done:
            return None

        for index in sorted(self._pending):
            task = self._pending[index]
            if task not in done:
                continue
            del self._pending[index]
            try:
                return index, task.result()
            except ChannelClosed as exc:
                raise ChannelClosed(exc.name, index=index) from exc

        return None  # pragma: no cover - asyncio.wait returned foreign tasks

    def close(self) -> None:
        """Cancel outstanding receive tasks."""

        for task in self._pending.values():
            task.cancel()
        self._pending.clear()
