import pytest

from grbl_relay.grbl import (
    GrblLineParser,
    GrblParseError,
    MachinePosition,
    MachineState,
    OkResponse,
    StatusReport,
    parse_response,
)


def test_parses_status_report():
    report = parse_response("<Run,MPos:1.000,2.000,3.000,WPos:0,0,0>")

    assert report == StatusReport(MachineState.RUN, MachinePosition(1.0, 2.0, 3.0))


def test_parses_pipe_separated_status_report():
    report = parse_response("<Idle|MPos:-1.500,0.000,12.250|FS:0,0>")

    assert report == StatusReport(MachineState.IDLE, MachinePosition(-1.5, 0.0, 12.25))


def test_parses_alarm_and_home_states():
    assert parse_response("<Alarm,MPos:0,0,0,WPos:0,0,0>").state is MachineState.ALARM
    assert parse_response("<Home|MPos:0,0,0>").state is MachineState.HOME


def test_parses_ok():
    assert parse_response("ok") == OkResponse()


@pytest.mark.parametrize(
    "line",
    [
        "<Bogus,MPos:1.000,2.000,3.000,WPos:0,0,0>",
        "<Run,MPos:1.000,abc,3.000,WPos:0,0,0>",
        "<Run,WPos:0,0,0>",
        "<Run|FS:0,0>",
        "error:20",
    ],
)
def test_rejects_malformed_lines(line):
    with pytest.raises(GrblParseError):
        parse_response(line)


def test_line_parser_needs_a_complete_line():
    parser = GrblLineParser(lambda line, response: response)

    assert parser.parse(b"<Run,MPos:1") is None


def test_line_parser_drops_unrecognised_lines(caplog):
    parser = GrblLineParser(lambda line, response: response)

    with caplog.at_level("WARNING"):
        assert parser.parse(b"<Bogus,MPos:1,2,3,WPos:0,0,0>\n") == (None, 30)

    assert "Dropping serial line" in caplog.text


def test_line_parser_skips_blank_lines_and_strips_carriage_returns():
    parser = GrblLineParser(lambda line, response: (line, response))

    assert parser.parse(b"\r\nok\r\n") == (None, 2)
    assert parser.parse(b"ok\r\n") == (("ok", OkResponse()), 4)


def test_line_parser_makes_progress_until_partial_frame():
    parser = GrblLineParser(lambda line, response: line)
    buffer = b"ok\nerror:9\n<Idle,MPos:0,0,0,WPos:0,0,0>\n<Ru"
    decoded = []

    while True:
        result = parser.parse(buffer)
        if result is None:
            break
        message, consumed = result
        assert consumed > 0
        buffer = buffer[consumed:]
        if message is not None:
            decoded.append(message)

    assert decoded == ["ok", "<Idle,MPos:0,0,0,WPos:0,0,0>"]
    assert buffer == b"<Ru"
