"""Periodic timer effect manager."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, NoReturn, Optional

from ..core import ChannelClosed, EffectManager, EffectManagerStopped

LOGGER = logging.getLogger(__name__)


class TickerEffectManager(EffectManager[Any, Any]):
    """Publishes ``factory()`` once every ``interval`` seconds.

    The ticker accepts no commands; registering it with an empty filter makes
    it a pure message source.
    """

    name = "ticker"

    def __init__(
        self,
        interval: float,
        factory: Callable[[], Any],
        *,
        name: Optional[str] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("ticker interval must be positive")
        super().__init__(name=name)
        self._interval = interval
        self._factory = factory

    @property
    def interval(self) -> float:
        return self._interval

    async def run(self) -> NoReturn:
        LOGGER.debug("%s ticking every %.3fs", self.name, self._interval)
        try:
            while True:
                await asyncio.sleep(self._interval)
                await self._publish(self._factory())
        except ChannelClosed as exc:
            LOGGER.warning("%s stopping: %s", self.name, exc)
            raise EffectManagerStopped(f"{self.name}: {exc}") from exc
