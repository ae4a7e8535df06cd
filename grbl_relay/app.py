"""Process wiring for grbl-relay."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

from .application import (
    GATEWAY_COMMANDS,
    SERIAL_COMMANDS,
    Broadcast,
    RelayApplication,
    RelaySerialMap,
    SerialReceived,
    Tick,
)
from .config import RelayConfig, load_config
from .core import EffectManager, EffectManagerStopped, EffectRuntime, EffectRuntimeError
from .effects import GatewayEffectManager, SerialEffectManager, TickerEffectManager
from .effects.serial import PortFactory, open_serial_port
from .grbl import GrblLineParser
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


class RelayApp:
    """Builds the effect managers and runtime and runs them as one unit.

    The first task to finish, successfully or not, ends the whole relay: the
    remaining tasks are cancelled and the finished task's error is raised.
    """

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        *,
        port_factory: PortFactory = open_serial_port,
    ) -> None:
        self._config = config or load_config()
        timing = self._config.timing

        self._application = RelayApplication(
            broadcast_interval=timing.broadcast_interval_seconds,
            idle_ping_interval=timing.idle_ping_seconds,
            history_limit=self._config.application.history_limit,
        )
        self._serial_ticks = TickerEffectManager(
            timing.tick_interval_seconds,
            lambda: Tick(time.monotonic()),
            name="serial-ticks",
        )
        self._broadcast_ticks = TickerEffectManager(
            timing.broadcast_interval_seconds,
            lambda: Broadcast(time.monotonic()),
            name="broadcast-ticks",
        )
        # Serial starts unconfigured; the application's init hands it the
        # configured device.
        self._serial = SerialEffectManager(
            None,
            GrblLineParser(SerialReceived),
            RelaySerialMap(),
            port_factory=port_factory,
            backoff_seconds=timing.serial_backoff_seconds,
            poll_seconds=timing.serial_poll_seconds,
            read_timeout_seconds=timing.serial_read_timeout_seconds,
        )
        self._gateway = GatewayEffectManager(
            self._config.gateway.host, self._config.gateway.port
        )

        self._runtime: EffectRuntime[Any, Any] = EffectRuntime(
            self._application,
            receive_timeout=timing.runtime_receive_timeout_seconds,
        )
        self._runtime.register(self._serial_ticks)
        self._runtime.register(self._broadcast_ticks)
        self._runtime.register(self._serial, SERIAL_COMMANDS)
        self._runtime.register(self._gateway, GATEWAY_COMMANDS)

    @property
    def runtime(self) -> EffectRuntime[Any, Any]:
        return self._runtime

    @property
    def managers(self) -> tuple[EffectManager[Any, Any], ...]:
        return (self._serial_ticks, self._broadcast_ticks, self._serial, self._gateway)

    async def run(self) -> None:
        LOGGER.info("grbl-relay starting with config: %s", self._config.path)

        tasks = [
            asyncio.create_task(self._runtime.run(self._config), name="runtime"),
            *(
                asyncio.create_task(manager.run(), name=manager.name)
                for manager in self.managers
            ),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        finished = next(iter(done))
        LOGGER.error("Task %s finished; shutting down", finished.get_name())
        if not finished.cancelled():
            finished.result()
        raise EffectRuntimeError(
            f"{finished.get_name()} stopped unexpectedly", manager=finished.get_name()
        )

    @classmethod
    def start(cls, config: Optional[RelayConfig] = None) -> int:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("grbl-relay received shutdown signal")
        except (EffectRuntimeError, EffectManagerStopped, OSError) as exc:
            LOGGER.error("grbl-relay stopped: %s", exc)
            return 1
        return 0
