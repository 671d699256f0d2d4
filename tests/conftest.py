"""Shared fixtures."""

import pytest

RELAYLOG_ENV = (
    "RELAYLOG_CONFIG",
    "RELAYLOG_BASE",
    "RELAYLOG_DATA",
    "RELAYLOG_ALIASES",
    "RELAYLOG_FIFO",
    "RELAYLOG_WORKER",
    "RELAYLOG_PHONE_ID",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path_factory, monkeypatch):
    """Keep the user's home config and relaylog environment out of tests."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(home)
    for name in RELAYLOG_ENV:
        monkeypatch.delenv(name, raising=False)
    return home
