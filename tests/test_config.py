#!/usr/bin/env python3
"""
Tests for configuration loading and the command line entry point.
"""
from pathlib import Path

import pytest

from trackpad_relay import cli, config as config_module
from trackpad_relay.config import DEFAULT_CONFIG, Config, deep_merge, load_config


def test_defaults_when_no_file(tmp_path: Path) -> None:
    config = Config(tmp_path / "missing.yaml")

    assert config.port == 9999
    assert config.ws_port == 10000
    assert config.history_size == 50
    assert config.ttl_seconds == 3600
    assert config.queue_size == 64
    assert config.notify_uploader is False
    assert config.navigate_keys == {"back": "alt+Left", "forward": "alt+Right"}


def test_yaml_file_is_merged_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(
        "server:\n"
        "  port: 8000\n"
        "  ws_port: 8100\n"
        "files:\n"
        "  ttl_seconds: 60\n"
        "  notify_uploader: true\n"
    )

    config = Config(path)

    assert config.port == 8000
    assert config.ws_port == 8100
    assert config.ttl_seconds == 60
    assert config.notify_uploader is True
    # untouched keys in the same section keep their defaults
    assert config.grace_seconds == 600
    assert config.host == "0.0.0.0"


def test_broken_yaml_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("server: [unclosed\n")

    assert load_config(path)["server"]["port"] == 9999


def test_overrides_do_not_leak_into_defaults() -> None:
    config = Config.from_dict({"server": {"port": 1234}})
    config.set("files", "upload_dir", "/elsewhere")

    assert config.port == 1234
    assert DEFAULT_CONFIG["server"]["port"] == 9999
    assert DEFAULT_CONFIG["files"]["upload_dir"] == "./uploads"


def test_deep_merge() -> None:
    merged = deep_merge({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"c": 5}, "e": 6})
    assert merged == {"a": {"b": 1, "c": 5}, "d": 3, "e": 6}


class TestCli:
    @pytest.fixture(autouse=True)
    def pid_file(self, tmp_path, monkeypatch):
        path = tmp_path / "relay.pid"
        monkeypatch.setattr(cli, "PID_FILE", path)
        return path

    def test_no_command_prints_help(self, capsys) -> None:
        assert cli.main([]) == 0
        assert "trackpad-relay" in capsys.readouterr().out

    def test_status_when_not_running(self, capsys) -> None:
        assert cli.main(["status"]) == 1
        assert "not running" in capsys.readouterr().out

    def test_stale_pid_file_is_removed(self, pid_file) -> None:
        pid_file.write_text("not-a-pid")
        assert cli.get_pid() is None
        assert not pid_file.exists()

    def test_start_refuses_when_running(self, pid_file, capsys) -> None:
        import os

        pid_file.write_text(str(os.getpid()))
        assert cli.main(["start"]) == 1
        assert "already running" in capsys.readouterr().out

    def test_start_applies_overrides(self, tmp_path, monkeypatch) -> None:
        captured = {}

        def fake_run_server(config):
            captured["config"] = config
            return 0

        monkeypatch.setattr("trackpad_relay.server.run_server", fake_run_server)
        monkeypatch.setattr(config_module, "get_config_paths", lambda: [])

        status = cli.main([
            "start", "--port", "8123", "--ws-port", "8124",
            "--upload-dir", str(tmp_path / "up"), "--notify-uploader",
        ])

        config = captured["config"]
        assert status == 0
        assert config.port == 8123
        assert config.ws_port == 8124
        assert config.upload_dir == tmp_path / "up"
        assert config.notify_uploader is True
        assert not cli.PID_FILE.exists()
