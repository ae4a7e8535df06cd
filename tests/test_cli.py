from pathlib import Path

from grbl_relay import cli


def test_show_config_prints_sections(tmp_path: Path, capsys) -> None:
    config_file = tmp_path / "grbl-relay.cfg"
    config_file.write_text("[serial]\ndevice = /dev/ttyUSB0\n", encoding="utf-8")

    assert cli.main(["-c", str(config_file), "show-config"]) == 0

    output = capsys.readouterr().out
    assert f"Configuration loaded from {config_file}" in output
    assert "[serial]" in output
    assert "device = /dev/ttyUSB0" in output
    assert "[timing]" in output


def test_invalid_config_exits_with_error(tmp_path: Path) -> None:
    config_file = tmp_path / "grbl-relay.cfg"
    config_file.write_text("[gateway]\nport = nope\n", encoding="utf-8")

    assert cli.main(["-c", str(config_file), "show-config"]) == 2


def test_start_delegates_to_app(tmp_path: Path, monkeypatch) -> None:
    started = []

    def fake_start(cls, config):
        started.append(config)
        return 0

    monkeypatch.setattr(cli.RelayApp, "start", classmethod(fake_start))

    assert cli.main(["-c", str(tmp_path / "missing.cfg"), "start"]) == 0
    assert started[0].path == tmp_path / "missing.cfg"
