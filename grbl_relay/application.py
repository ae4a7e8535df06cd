"""The relay's pure state machine.

:class:`RelayApplication` never performs I/O. It consumes messages from the
ticker, serial and gateway effect managers and answers with commands that the
runtime routes back to them. Time enters only through the timestamps carried
by :class:`Tick` and :class:`Broadcast`.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Union

from .effects.gateway import (
    ClientConnected,
    ClientData,
    ClientDisconnected,
    FileUpload,
    SendTo,
)
from .effects.serial import SerialConfiguration, SerialConfigure, SerialControl, SerialData
from .grbl import STATUS_QUERY, GrblResponse, StatusReport
from .protocol import (
    ClientRequestError,
    CloseSerialRequest,
    ConfigurationRequest,
    RawSerialRequest,
    RetrySerialRequest,
    parse_client_request,
    received_data_entry,
    render_response,
    render_state,
    sent_command_entry,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_BROADCAST_INTERVAL_SECONDS = 2.0
DEFAULT_IDLE_PING_SECONDS = 3.0
DEFAULT_HISTORY_LIMIT = 100


@dataclass(frozen=True, slots=True)
class Tick:
    at: float


@dataclass(frozen=True, slots=True)
class Broadcast:
    at: float


@dataclass(frozen=True, slots=True)
class SerialConnected:
    pass


@dataclass(frozen=True, slots=True)
class SerialDisconnected:
    pass


@dataclass(frozen=True, slots=True)
class SerialReceived:
    line: str
    response: GrblResponse


Message = Union[
    Tick,
    Broadcast,
    SerialConnected,
    SerialDisconnected,
    SerialReceived,
    ClientConnected,
    ClientData,
    ClientDisconnected,
    FileUpload,
]


@dataclass(frozen=True, slots=True)
class SerialStatus:
    def __str__(self) -> str:
        return STATUS_QUERY


@dataclass(frozen=True, slots=True)
class SerialRaw:
    text: str

    def __str__(self) -> str:
        return f"{self.text}\n"


Command = Union[SerialStatus, SerialRaw, SerialConfigure, SerialControl, SendTo]

SERIAL_COMMANDS = (SerialStatus, SerialRaw, SerialConfigure, SerialControl)
GATEWAY_COMMANDS = (SendTo,)


@dataclass(frozen=True, slots=True)
class Disconnected:
    pass


@dataclass(frozen=True, slots=True)
class Idle:
    last_ping: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PendingAttempt:
    pass


@dataclass(frozen=True, slots=True)
class SendingFile:
    remaining: str


SerialConnectionState = Union[Disconnected, Idle, PendingAttempt, SendingFile]


@dataclass(slots=True)
class ClientView:
    """What one UI client is shown."""

    history: Deque[Dict[str, Any]]
    tick: int = 0
    serial_available: bool = False
    last_config: Optional[SerialConfiguration] = None


@dataclass(slots=True)
class RelayApplication:
    """State machine bridging UI clients and the GRBL controller."""

    broadcast_interval: float = DEFAULT_BROADCAST_INTERVAL_SECONDS
    idle_ping_interval: float = DEFAULT_IDLE_PING_SECONDS
    history_limit: int = DEFAULT_HISTORY_LIMIT

    clients: Dict[str, ClientView] = field(default_factory=dict)
    connection: SerialConnectionState = field(default_factory=Disconnected)
    last_config: Optional[SerialConfiguration] = None
    machine: Optional[StatusReport] = None
    last_broadcast: Optional[float] = None

    @property
    def serial_available(self) -> bool:
        return isinstance(self.connection, Idle)

    def init(self, flags: Any) -> tuple["RelayApplication", List[Command]]:
        """Apply startup configuration.

        Args:
            flags: Object exposing ``serial``, the configured
                :class:`SerialConfiguration` or ``None`` when serial is
                disabled at startup.
        """

        config = getattr(flags, "serial", None)
        if config is None:
            return self, []

        LOGGER.info("Sending initial serial configuration %s", config)
        self.last_config = config
        self.connection = Disconnected()
        return self, [SerialConfigure(config)]

    def update(self, message: Message) -> tuple["RelayApplication", List[Command]]:
        if isinstance(message, Tick):
            return self, self._on_tick(message.at)
        if isinstance(message, Broadcast):
            return self, self._on_broadcast(message.at)
        if isinstance(message, SerialConnected):
            LOGGER.info("Serial connection available")
            self.connection = Idle()
            return self, self._state_commands()
        if isinstance(message, SerialDisconnected):
            LOGGER.warning("Serial connection lost")
            self.connection = Disconnected()
            return self, self._state_commands()
        if isinstance(message, SerialReceived):
            return self, self._on_serial_line(message)
        if isinstance(message, ClientConnected):
            return self, self._on_client_connected(message.client_id)
        if isinstance(message, ClientDisconnected):
            LOGGER.debug("Client %s disconnected", message.client_id)
            self.clients.pop(message.client_id, None)
            return self, []
        if isinstance(message, ClientData):
            return self, self._on_client_data(message.client_id, message.payload)
        if isinstance(message, FileUpload):
            return self, self._on_file_upload(message.contents)

        LOGGER.warning("Ignoring unknown message %r", message)
        return self, []

    def _on_tick(self, at: float) -> List[Command]:
        commands: List[Command] = []

        if isinstance(self.connection, SendingFile):
            remaining = self.connection.remaining
            if remaining:
                line, _, rest = remaining.partition("\n")
                line = line.rstrip("\r")
                LOGGER.info("Sending next program line %r", line)
                commands.append(SerialRaw(line))
                self.connection = SendingFile(rest)
            else:
                LOGGER.info("Program upload finished")
                self.connection = Idle()

        if isinstance(self.connection, Idle):
            last_ping = self.connection.last_ping
            if last_ping is None or at - last_ping > self.idle_ping_interval:
                self.connection = Idle(at)
                commands.append(SerialStatus())

        return commands

    def _on_broadcast(self, at: float) -> List[Command]:
        if self.last_broadcast is None:
            self.last_broadcast = at
            return []

        if at - self.last_broadcast < self.broadcast_interval:
            return []

        self.last_broadcast = at
        if not self.clients:
            return []

        LOGGER.debug("Broadcasting state to %d clients", len(self.clients))
        return self._state_commands()

    def _on_serial_line(self, message: SerialReceived) -> List[Command]:
        LOGGER.debug("Serial line %r", message.line)
        if isinstance(message.response, StatusReport):
            self.machine = message.response

        entry = received_data_entry(message.line)
        for view in self.clients.values():
            view.history.append(entry)
        return self._state_commands()

    def _on_client_connected(self, client_id: str) -> List[Command]:
        LOGGER.debug("Client %s connected", client_id)
        view = ClientView(
            history=deque(maxlen=self.history_limit),
            serial_available=self.serial_available,
            last_config=self.last_config,
        )
        self.clients[client_id] = view
        return [SendTo(client_id, self._render(view))]

    def _on_client_data(self, client_id: str, payload: str) -> List[Command]:
        view = self.clients.get(client_id)
        if view is None:
            LOGGER.warning("Data from unknown client %s", client_id)
            return []

        try:
            request = parse_client_request(payload)
        except ClientRequestError as exc:
            LOGGER.warning(
                "Invalid request from client %s (%s): %s", client_id, exc.code, exc
            )
            return [SendTo(client_id, render_response(0, ok=False))]

        view.tick = request.tick
        commands: List[Command] = []

        if isinstance(request, ConfigurationRequest):
            commands.append(SerialConfigure(request.config))
            self.last_config = request.config
            self.connection = PendingAttempt()
            for other in self.clients.values():
                other.last_config = request.config
        elif isinstance(request, RetrySerialRequest):
            LOGGER.info("Client %s asked to reconnect serial", client_id)
            commands.append(SerialControl(True))
        elif isinstance(request, CloseSerialRequest):
            LOGGER.info("Client %s asked to close serial", client_id)
            commands.append(SerialControl(False))
        elif isinstance(request, RawSerialRequest):
            commands.append(SerialRaw(request.value))
            view.history.append(sent_command_entry(request))
        else:
            LOGGER.warning("Unhandled request %r", request)

        commands.append(SendTo(client_id, render_response(request.tick, ok=True)))
        commands.extend(self._state_commands())
        return commands

    def _on_file_upload(self, contents: str) -> List[Command]:
        if not self.serial_available:
            LOGGER.warning("Serial not ready; ignoring uploaded program")
            return []

        LOGGER.info("Queued uploaded program (%d bytes)", len(contents))
        self.connection = SendingFile(contents)
        return []

    def _state_commands(self) -> List[Command]:
        available = self.serial_available
        commands: List[Command] = []
        for client_id, view in self.clients.items():
            view.serial_available = available
            commands.append(SendTo(client_id, self._render(view)))
        return commands

    def _render(self, view: ClientView) -> str:
        return render_state(
            tick=view.tick,
            history=view.history,
            serial_available=view.serial_available,
            last_config=view.last_config,
            machine=self.machine,
        )


class RelaySerialMap:
    """Connects the serial effect manager to :class:`RelayApplication`."""

    def translate(self, command: Any) -> Optional[object]:
        if isinstance(command, (SerialControl, SerialConfigure)):
            return command
        if isinstance(command, (SerialStatus, SerialRaw)):
            return SerialData(command)
        return None

    def connected(self) -> SerialConnected:
        return SerialConnected()

    def disconnected(self) -> SerialDisconnected:
        return SerialDisconnected()
