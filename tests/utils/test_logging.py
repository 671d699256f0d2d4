"""Tests for logging setup."""

import json

from relaylog.utils.logging import configure_logging, get_logger


class TestConfigureLogging:
    """Test configure_logging."""

    def test_json_to_stderr(self, capsys):
        """Test JSON entries go to stderr and leave stdout alone."""
        configure_logging("INFO", "json")

        get_logger("relaylog.test").info("Opened shard", key="max")

        captured = capsys.readouterr()
        entry = json.loads(captured.err.strip().splitlines()[-1])
        assert captured.out == ""
        assert entry["event"] == "Opened shard"
        assert entry["key"] == "max"
        assert entry["app"] == "relaylog"
        assert entry["level"] == "info"

    def test_level_filters(self, capsys):
        configure_logging("WARNING", "json")

        get_logger("relaylog.test.level").info("hidden")

        assert capsys.readouterr().err == ""

    def test_stdout_output(self, capsys):
        configure_logging("INFO", "console", "stdout")

        get_logger("relaylog.test.stdout").warning("Rotation failed")

        assert "Rotation failed" in capsys.readouterr().out
