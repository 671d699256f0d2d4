"""Tests for configuration loading and the hub entry point."""

import dataclasses
import json
import threading

import pytest

from relaylog.replication import main as hub_main
from relaylog.utils.config import Config, ConfigError, find_config_file


class TestConfig:
    """Test Config merging."""

    def test_defaults(self, isolated_environment):
        settings = Config(environ={}).settings()

        assert settings.base_dir == isolated_environment / ".relaylog"
        assert settings.data_dir == settings.base_dir
        assert settings.global_log_path == settings.base_dir / "events.jsonl"
        assert settings.state_path == settings.base_dir / "state.json"
        assert settings.fifo_path == settings.base_dir / "send.fifo"
        assert settings.rotate_global_bytes == 0
        assert settings.retry_backoff_ms == 250

    def test_relative_paths_follow_config_file(self, tmp_path):
        """Test paths in the file are relative to the file's directory."""
        config_file = tmp_path / "conf" / "relaylog.yaml"
        config_file.parent.mkdir()
        config_file.write_text(
            "base_dir: run\n"
            "data_dir: ../data\n"
            "per_dir: peers\n"
            "rotate_peer_bytes: 1024\n"
            "worker: https://worker.test/\n"
            "phone_id: '123'\n"
        )

        settings = Config(str(config_file), environ={}).settings()

        assert settings.base_dir == tmp_path / "conf" / "run"
        assert settings.data_dir == tmp_path / "conf" / ".." / "data"
        assert settings.per_dir == tmp_path / "conf" / "peers"
        assert settings.rotate_peer_bytes == 1024
        assert settings.worker == "https://worker.test"
        assert settings.phone_id == "123"

    def test_json_config_file(self, tmp_path):
        config_file = tmp_path / "relaylog.json"
        config_file.write_text(json.dumps({"pull_limit": 50, "logging": {"level": "DEBUG"}}))

        settings = Config(str(config_file), environ={}).settings()

        assert settings.pull_limit == 50
        assert settings.log_level == "DEBUG"
        assert settings.log_format == "console"

    def test_tab_indented_json_config(self, tmp_path):
        """Test JSON config files are not parsed as YAML."""
        config_file = tmp_path / "relaylog.json"
        config_file.write_text(json.dumps({"worker": "http://w", "pull_limit": 20}, indent="\t"))

        settings = Config(str(config_file), environ={}).settings()

        assert settings.worker == "http://w"
        assert settings.pull_limit == 20

    def test_undecodable_config_file(self, tmp_path):
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_bytes(b"\xff\xfe\x00garbage")

        with pytest.raises(ConfigError):
            Config(str(config_file), environ={})

    @pytest.mark.parametrize("raw, expected", [
        ("false", False),
        ("'false'", False),
        ("'no'", False),
        ("0", False),
        ("'true'", True),
        ("'On'", True),
        ("1", True),
    ])
    def test_fsync_flag_parsing(self, tmp_path, raw, expected):
        """Test quoted strings are parsed instead of truth-tested."""
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_text(f"fsync_on_append: {raw}\n")

        assert Config(str(config_file), environ={}).settings().fsync_on_append is expected

    def test_bad_fsync_flag(self, tmp_path):
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_text("fsync_on_append: sometimes\n")

        with pytest.raises(ConfigError):
            Config(str(config_file), environ={}).settings()

    def test_env_overrides_file(self, tmp_path):
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_text("worker: http://from-file\naliases_path: a.json\n")

        settings = Config(str(config_file), environ={
            "RELAYLOG_WORKER": "http://from-env",
            "RELAYLOG_ALIASES": "b.json",
            "LOG_LEVEL": "WARNING",
        }).settings()

        assert settings.worker == "http://from-env"
        assert settings.aliases_path == tmp_path / "b.json"
        assert settings.log_level == "WARNING"

    def test_config_found_through_environment(self, tmp_path):
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("phone_id: '77'\n")

        config = Config(environ={"RELAYLOG_CONFIG": str(config_file)})

        assert config.config_path == config_file
        assert config.settings().phone_id == "77"

    def test_home_config_found(self, isolated_environment):
        home_config = isolated_environment / ".relaylog" / "relaylog.yaml"
        home_config.parent.mkdir()
        home_config.write_text("pull_limit: 9\n")

        assert find_config_file(environ={}) == home_config
        assert Config(environ={}).settings().pull_limit == 9

    def test_legacy_global_log(self, tmp_path):
        """Test the single-key global log form sets directory and name."""
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_text("data_dir: data\nglobal_log: logs/all.jsonl\n")

        settings = Config(str(config_file), environ={}).settings()

        assert settings.global_log_path == tmp_path / "logs" / "all.jsonl"
        assert settings.per_dir == tmp_path / "data"

    def test_legacy_global_log_bare_name(self, tmp_path):
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_text("data_dir: data\nglobal_log: all.jsonl\n")

        settings = Config(str(config_file), environ={}).settings()

        assert settings.global_log_path == tmp_path / "data" / "all.jsonl"

    def test_dot_notation(self):
        config = Config(environ={})
        config.set("logging.level", "ERROR")

        assert config.get("logging.level") == "ERROR"
        assert config.get("logging.missing", "x") == "x"
        assert config.to_dict()["logging"]["format"] == "console"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigError):
            Config(str(tmp_path / "missing.yaml"), environ={})

    def test_non_mapping_file(self, tmp_path):
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigError):
            Config(str(config_file), environ={})

    def test_bad_number(self, tmp_path):
        config_file = tmp_path / "relaylog.yaml"
        config_file.write_text("pull_limit: lots\n")

        with pytest.raises(ConfigError):
            Config(str(config_file), environ={}).settings()

    def test_require_addressing(self):
        settings = Config(environ={"RELAYLOG_WORKER": "http://w"}).settings()

        with pytest.raises(ConfigError, match="phone_id"):
            settings.require_addressing()


class TestHubMain:
    """Test the relaylog-hub entry point."""

    def test_cli_overrides_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RELAYLOG_WORKER", "http://from-env")
        monkeypatch.setenv("RELAYLOG_PHONE_ID", "1")

        args = hub_main.parse_args(["--worker", "http://from-cli/", "--limit", "10"])
        settings = hub_main.build_settings(args)

        assert settings.worker == "http://from-cli"
        assert settings.phone_id == "1"
        assert settings.pull_limit == 10

    def test_missing_worker_exits_before_io(self, tmp_path, capsys):
        data_dir = tmp_path / "data"

        code = hub_main.main(["--data", str(data_dir), "--phone", "1"])

        assert code == 2
        assert "worker" in capsys.readouterr().err
        assert not data_dir.exists()

    def test_run_creates_layout_and_stops(self, tmp_path):
        """Test a pre-stopped hub opens its files and shuts down cleanly."""
        args = hub_main.parse_args([
            "--base", str(tmp_path / "run"),
            "--data", str(tmp_path / "data"),
            "--worker", "http://worker.invalid",
            "--phone", "1",
        ])
        settings = hub_main.build_settings(args)
        stop_event = threading.Event()
        stop_event.set()

        assert hub_main.run(settings, stop_event) == 0

        assert (tmp_path / "data" / "events.jsonl").exists()
        assert (tmp_path / "data" / "meta.jsonl").exists()
        assert (tmp_path / "run" / "send.fifo").exists()

    def test_unusable_per_dir_keeps_running(self, tmp_path):
        """Test a shard directory that cannot be created does not stop the hub."""
        blocker = tmp_path / "blocker"
        blocker.write_text("regular file")
        args = hub_main.parse_args([
            "--base", str(tmp_path / "run"),
            "--data", str(tmp_path / "data"),
            "--worker", "http://worker.invalid",
            "--phone", "1",
        ])
        settings = dataclasses.replace(hub_main.build_settings(args), per_dir=blocker / "peers")
        stop_event = threading.Event()
        stop_event.set()

        assert hub_main.run(settings, stop_event) == 0
        assert (tmp_path / "data" / "events.jsonl").exists()

    def test_unusable_data_dir_exits_two(self, tmp_path):
        """Test a global log that cannot be opened is a start-up failure."""
        blocker = tmp_path / "blocker"
        blocker.write_text("regular file")
        args = hub_main.parse_args([
            "--base", str(tmp_path / "run"),
            "--data", str(blocker / "data"),
            "--worker", "http://worker.invalid",
            "--phone", "1",
        ])

        assert hub_main.run(hub_main.build_settings(args), threading.Event()) == 2

    def test_fifo_path_in_use_exits_two(self, tmp_path):
        fifo = tmp_path / "send.fifo"
        fifo.write_text("regular file")
        args = hub_main.parse_args([
            "--data", str(tmp_path / "data"),
            "--fifo", str(fifo),
            "--worker", "http://worker.invalid",
            "--phone", "1",
        ])

        assert hub_main.run(hub_main.build_settings(args), threading.Event()) == 2
