"""JSON wire format spoken with UI clients over the websocket."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union

from .effects.serial import SerialConfiguration
from .grbl import StatusReport

LOGGER = logging.getLogger(__name__)

MAX_TICK = 2**32 - 1


class ClientRequestError(RuntimeError):
    """Raised when a client payload is not a valid request."""

    def __init__(self, message: str, *, code: str = "invalid_payload") -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True, slots=True)
class RawSerialRequest:
    tick: int
    value: str

    kind = "raw_serial"


@dataclass(frozen=True, slots=True)
class ConfigurationRequest:
    tick: int
    config: SerialConfiguration

    kind = "configuration"


@dataclass(frozen=True, slots=True)
class CloseSerialRequest:
    tick: int

    kind = "close_serial"


@dataclass(frozen=True, slots=True)
class RetrySerialRequest:
    tick: int

    kind = "retry_serial"


ClientRequest = Union[
    RawSerialRequest, ConfigurationRequest, CloseSerialRequest, RetrySerialRequest
]


def parse_client_request(payload: str) -> ClientRequest:
    """Decode one text frame sent by a client.

    Args:
        payload: Raw websocket text, e.g.
            ``{"tick": 5, "kind": "raw_serial", "value": "G0 X1"}``.

    Returns:
        The request variant named by ``kind``.

    Raises:
        ClientRequestError: If the payload is not JSON, ``tick`` is not an
            unsigned 32-bit integer, ``kind`` is unknown, or a variant field is
            missing or mistyped.
    """

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ClientRequestError("Payload is not valid JSON", code="invalid_json") from exc

    if not isinstance(data, dict):
        raise ClientRequestError("Payload must be a JSON object")

    tick = data.get("tick")
    if isinstance(tick, bool) or not isinstance(tick, int) or not 0 <= tick <= MAX_TICK:
        raise ClientRequestError("tick must be an unsigned 32-bit integer", code="invalid_tick")

    kind = data.get("kind")
    if kind == RawSerialRequest.kind:
        value = data.get("value")
        if not isinstance(value, str):
            raise ClientRequestError("value must be a string", code="invalid_parameters")
        return RawSerialRequest(tick, value)

    if kind == ConfigurationRequest.kind:
        device = data.get("device")
        baud = data.get("baud")
        if not isinstance(device, str) or not device:
            raise ClientRequestError("device must be a non-empty string", code="invalid_parameters")
        if isinstance(baud, bool) or not isinstance(baud, int) or baud <= 0:
            raise ClientRequestError("baud must be a positive integer", code="invalid_parameters")
        return ConfigurationRequest(tick, SerialConfiguration(device, baud))

    if kind == CloseSerialRequest.kind:
        return CloseSerialRequest(tick)

    if kind == RetrySerialRequest.kind:
        return RetrySerialRequest(tick)

    raise ClientRequestError(f"unknown request kind: {kind!r}", code="invalid_kind")


def request_as_dict(request: ClientRequest) -> Dict[str, Any]:
    """Render a request back to its wire shape, used for history entries."""

    data: Dict[str, Any] = {"tick": request.tick, "kind": request.kind}
    if isinstance(request, RawSerialRequest):
        data["value"] = request.value
    elif isinstance(request, ConfigurationRequest):
        data.update(request.config.as_dict())
    return data


def sent_command_entry(request: ClientRequest) -> Dict[str, Any]:
    return {"history_kind": "sent_command", **request_as_dict(request)}


def received_data_entry(content: str) -> Dict[str, Any]:
    return {"history_kind": "received_data", "content": content}


def render_state(
    *,
    tick: int,
    history: Iterable[Dict[str, Any]],
    serial_available: bool,
    last_config: Optional[SerialConfiguration],
    machine: Optional[StatusReport],
) -> str:
    return json.dumps(
        {
            "kind": "state",
            "tick": tick,
            "history": list(history),
            "serial_available": serial_available,
            "last_config": last_config.as_dict() if last_config is not None else None,
            "machine": machine.as_dict() if machine is not None else None,
        }
    )


def render_response(tick: int, ok: bool) -> str:
    return json.dumps({"kind": "response", "tick": tick, "status": "ok" if ok else "failed"})
