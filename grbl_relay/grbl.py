"""GRBL serial line protocol.

Outbound traffic is plain text lines. Inbound, the firmware answers ``ok`` to
accepted lines and ``<STATE,MPos:x,y,z,...>`` (GRBL 0.9) or
``<STATE|MPos:x,y,z|...>`` (GRBL 1.1) to a ``?`` status query.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar, Union

LOGGER = logging.getLogger(__name__)

STATUS_QUERY = "?\n"

MessageT = TypeVar("MessageT")


class GrblParseError(RuntimeError):
    """Raised for a firmware line that is not a recognised response."""


class MachineState(str, Enum):
    IDLE = "Idle"
    RUN = "Run"
    HOME = "Home"
    ALARM = "Alarm"


@dataclass(frozen=True, slots=True)
class MachinePosition:
    x: float
    y: float
    z: float

    def as_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


@dataclass(frozen=True, slots=True)
class StatusReport:
    state: MachineState
    position: MachinePosition

    def as_dict(self) -> dict[str, object]:
        return {"state": self.state.value, "position": self.position.as_dict()}


@dataclass(frozen=True, slots=True)
class OkResponse:
    pass


GrblResponse = Union[OkResponse, StatusReport]


def _parse_state(token: str) -> MachineState:
    # GRBL 1.1 may append a sub-state, e.g. ``Hold:0``.
    name = token.split(":", 1)[0]
    try:
        return MachineState(name)
    except ValueError as exc:
        raise GrblParseError(f"bad machine state - {name!r}") from exc


def _parse_position(values: list[str]) -> MachinePosition:
    if len(values) < 3:
        raise GrblParseError(f"bad machine position - {values!r}")
    try:
        x, y, z = (float(value) for value in values[:3])
    except ValueError as exc:
        raise GrblParseError(f"bad machine position - {values!r}") from exc
    return MachinePosition(x, y, z)


def parse_status(line: str) -> StatusReport:
    """Parse a ``<...>`` status report.

    Raises:
        GrblParseError: If the state is unknown or the position is malformed.
    """

    body = line[1:]
    if body.endswith(">"):
        body = body[:-1]

    if "|" in body:
        fields = body.split("|")
        state = _parse_state(fields[0])
        for field in fields[1:]:
            if field.startswith("MPos:"):
                return StatusReport(state, _parse_position(field[5:].split(",")))
        raise GrblParseError(f"missing machine position - {line!r}")

    fields = body.split(",")
    state = _parse_state(fields[0])
    if len(fields) < 4 or not fields[1].startswith("MPos:"):
        raise GrblParseError(f"bad status fields - {line!r}")
    return StatusReport(state, _parse_position([fields[1][5:], fields[2], fields[3]]))


def parse_response(line: str) -> GrblResponse:
    """Parse one firmware line with its terminator already removed.

    Raises:
        GrblParseError: For anything other than ``ok`` or a status report.
    """

    if line == "ok":
        return OkResponse()
    if line.startswith("<"):
        return parse_status(line)
    raise GrblParseError(f"unknown grbl response - {line!r}")


class GrblLineParser(Generic[MessageT]):
    """Newline-framed parser turning firmware lines into messages.

    ``factory`` receives the raw line and its parsed response and builds the
    message handed to the application.
    """

    def __init__(self, factory: Callable[[str, GrblResponse], MessageT]) -> None:
        self._factory = factory

    def parse(self, data: bytes) -> Optional[tuple[Optional[MessageT], int]]:
        end = data.find(b"\n")
        if end < 0:
            return None

        consumed = end + 1
        line = data[:end].decode("utf-8", errors="replace").rstrip("\r").strip()
        if not line:
            return None, consumed

        try:
            response = parse_response(line)
        except GrblParseError as exc:
            LOGGER.warning("Dropping serial line %r: %s", line, exc)
            return None, consumed

        return self._factory(line, response), consumed
