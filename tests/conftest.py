"""Shared fixtures: isolate process-global shell mode and logger state."""

import logging

import pytest

from webui_setup import logger as logger_module
from webui_setup import shell_mode
from webui_setup.logger import LOGGER_NAME, LogLevel


@pytest.fixture(autouse=True)
def reset_globals(monkeypatch):
    monkeypatch.setattr(shell_mode, "_current", shell_mode.ShellMode())
    monkeypatch.setattr(logger_module, "_verbosity", LogLevel.INFO)
    monkeypatch.setattr(logger_module, "_debug", False)
    yield
    log = logging.getLogger(LOGGER_NAME)
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()
    log.setLevel(logging.NOTSET)


@pytest.fixture
def no_sleep():
    """Sleep stand-in that records requested delays."""
    delays = []

    def fake_sleep(seconds):
        delays.append(seconds)

    fake_sleep.delays = delays
    return fake_sleep
