import json

import pytest

from grbl_relay.effects.serial import SerialConfiguration
from grbl_relay.grbl import MachinePosition, MachineState, StatusReport
from grbl_relay.protocol import (
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


def test_parses_raw_serial_request():
    request = parse_client_request('{"tick": 5, "kind": "raw_serial", "value": "G0 X1"}')

    assert request == RawSerialRequest(tick=5, value="G0 X1")


def test_parses_configuration_request():
    request = parse_client_request(
        '{"tick": 7, "kind": "configuration", "device": "/dev/ttyUSB0", "baud": 115200}'
    )

    assert request == ConfigurationRequest(7, SerialConfiguration("/dev/ttyUSB0", 115200))


def test_parses_control_requests():
    assert parse_client_request('{"tick": 1, "kind": "close_serial"}') == CloseSerialRequest(1)
    assert parse_client_request('{"tick": 2, "kind": "retry_serial"}') == RetrySerialRequest(2)


@pytest.mark.parametrize(
    "payload, code",
    [
        ("not json", "invalid_json"),
        ("[1, 2]", "invalid_payload"),
        ('{"kind": "close_serial"}', "invalid_tick"),
        ('{"tick": -1, "kind": "close_serial"}', "invalid_tick"),
        ('{"tick": 4294967296, "kind": "close_serial"}', "invalid_tick"),
        ('{"tick": true, "kind": "close_serial"}', "invalid_tick"),
        ('{"tick": 1, "kind": "launch"}', "invalid_kind"),
        ('{"tick": 1, "kind": "raw_serial"}', "invalid_parameters"),
        (
            '{"tick": 1, "kind": "configuration", "device": "/dev/ttyUSB0", "baud": "fast"}',
            "invalid_parameters",
        ),
        ('{"tick": 1, "kind": "configuration", "baud": 9600}', "invalid_parameters"),
    ],
)
def test_rejects_invalid_requests(payload, code):
    with pytest.raises(ClientRequestError) as excinfo:
        parse_client_request(payload)

    assert excinfo.value.code == code


def test_accepts_max_tick():
    assert parse_client_request('{"tick": 4294967295, "kind": "retry_serial"}').tick == 4294967295


def test_render_response():
    assert json.loads(render_response(5, ok=True)) == {"kind": "response", "tick": 5, "status": "ok"}
    assert json.loads(render_response(0, ok=False)) == {
        "kind": "response",
        "tick": 0,
        "status": "failed",
    }


def test_render_state_with_history():
    history = [
        sent_command_entry(RawSerialRequest(3, "G0 X1")),
        received_data_entry("ok"),
    ]

    payload = json.loads(
        render_state(
            tick=3,
            history=history,
            serial_available=True,
            last_config=SerialConfiguration("/dev/ttyUSB0", 115200),
            machine=StatusReport(MachineState.RUN, MachinePosition(1.0, 2.0, 3.0)),
        )
    )

    assert payload == {
        "kind": "state",
        "tick": 3,
        "history": [
            {"history_kind": "sent_command", "tick": 3, "kind": "raw_serial", "value": "G0 X1"},
            {"history_kind": "received_data", "content": "ok"},
        ],
        "serial_available": True,
        "last_config": {"device": "/dev/ttyUSB0", "baud": 115200},
        "machine": {"state": "Run", "position": {"x": 1.0, "y": 2.0, "z": 3.0}},
    }


def test_render_state_without_config_or_machine():
    payload = json.loads(
        render_state(tick=0, history=[], serial_available=False, last_config=None, machine=None)
    )

    assert payload["last_config"] is None
    assert payload["machine"] is None
    assert payload["serial_available"] is False
