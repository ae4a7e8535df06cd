"""Effect runtime: drives a pure application from its effect managers.

The runtime is the only place an :class:`~.protocols.Application` is invoked.
Each frame it waits (with a short ceiling) for the next Message from any
registered effect manager, applies it, and routes every resulting Command to
the first manager whose route accepts it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Generic, Iterable, NoReturn, Optional, Sequence, TypeVar

from .channels import ChannelClosed, Receiver, Selector, Sender
from .effect import EffectManager
from .protocols import Application

LOGGER = logging.getLogger(__name__)

DEFAULT_RECEIVE_TIMEOUT_SECONDS = 0.1

M = TypeVar("M")
C = TypeVar("C")


class EffectRuntimeError(RuntimeError):
    """Raised when the runtime loses a channel to one of its managers."""

    def __init__(self, message: str, *, manager: Optional[str] = None) -> None:
        super().__init__(message)
        self.manager = manager


@dataclass(slots=True)
class Route(Generic[M, C]):
    """One row of the routing table."""

    name: str
    messages: Receiver[M]
    commands: Sender[C]
    accepts: tuple[type, ...]

    def accepts_command(self, command: Any) -> bool:
        return isinstance(command, self.accepts)


class EffectRuntime(Generic[M, C]):
    """Merges manager messages into one stream and routes commands back.

    Routes are checked in registration order and a command is delivered to
    the first route that accepts it, so no command ever reaches two managers.
    """

    def __init__(
        self,
        application: Application[Any, Any, Any],
        *,
        receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT_SECONDS,
    ) -> None:
        self._application = application
        self._receive_timeout = receive_timeout
        self._routes: list[Route[M, C]] = []
        self._selector: Optional[Selector[M]] = None

    @property
    def application(self) -> Any:
        return self._application

    @property
    def routes(self) -> Sequence[Route[M, C]]:
        return tuple(self._routes)

    def register(
        self,
        manager: EffectManager[M, C],
        accepts: Iterable[type] = (),
        *,
        name: Optional[str] = None,
    ) -> Route[M, C]:
        """Detach ``manager`` and append it to the routing table.

        Args:
            manager: Effect manager whose channels the runtime takes over.
            accepts: Command types routed to this manager. An empty
                collection registers a message-only source.
            name: Label used in logs and errors, defaults to ``manager.name``.

        Raises:
            AlreadyDetachedError: If the manager was already registered.
            RuntimeError: If called after the dispatch loop started.
        """

        if self._selector is not None:
            raise RuntimeError("cannot register effect managers while running")

        messages, commands = manager.detach()
        route = Route(
            name=name or manager.name,
            messages=messages,
            commands=commands,
            accepts=tuple(accepts),
        )
        self._routes.append(route)
        LOGGER.debug(
            "Registered effect manager %s accepting %s",
            route.name,
            [kind.__name__ for kind in route.accepts] or "no commands",
        )
        return route

    async def init(self, flags: Any) -> None:
        """Run the application's init hook and publish its commands."""

        self._application, commands = self._application.init(flags)
        await self.publish(commands)

    async def run(self, flags: Any) -> NoReturn:
        """Initialise the application and dispatch frames forever.

        Raises:
            EffectRuntimeError: When a manager's channel closes.
        """

        await self.init(flags)
        LOGGER.info("Effect runtime running with %d managers", len(self._routes))
        try:
            while True:
                await self.frame()
        except EffectRuntimeError as exc:
            LOGGER.error("Effect runtime terminal failure: %s", exc)
            raise
        finally:
            self.close()

    async def frame(self) -> bool:
        """Process at most one message.

        Returns:
            ``True`` when a message was applied, ``False`` on timeout.
        """

        selector = self._selector
        if selector is None:
            selector = Selector([route.messages for route in self._routes])
            self._selector = selector

        try:
            received = await selector.next(timeout=self._receive_timeout)
        except ChannelClosed as exc:
            route = self._routes[exc.index] if exc.index is not None else None
            manager = route.name if route is not None else None
            raise EffectRuntimeError(
                f"message channel from {manager or exc.name} closed", manager=manager
            ) from exc

        if received is None:
            return False

        _, message = received
        LOGGER.debug("Applying message %r", message)
        self._application, commands = self._application.update(message)
        await self.publish(commands)
        return True

    async def publish(self, commands: Optional[Sequence[C]]) -> None:
        """Deliver each command to the first route accepting it."""

        for command in commands or ():
            route = self._route_for(command)
            if route is None:
                LOGGER.warning("No effect manager accepts command %r; dropping", command)
                continue

            try:
                await route.commands.send(command)
            except ChannelClosed as exc:
                raise EffectRuntimeError(
                    f"command channel to {route.name} closed", manager=route.name
                ) from exc

    def close(self) -> None:
        if self._selector is not None:
            self._selector.close()
            self._selector = None

    def _route_for(self, command: C) -> Optional[Route[M, C]]:
        for route in self._routes:
            if route.accepts_command(command):
                return route
        return None
