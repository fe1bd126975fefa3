"""Tests for the provisioning steps (no commands reach the host)."""

import httpx
import pytest

from webui_setup import setup_steps
from webui_setup.config import ServiceConfig, SetupConfig
from webui_setup.shell_mode import CommandFailedError, ShellMode, set_shell_mode


class Recorder:
    """Stands in for execute_with_retry; fails commands listed in ``failing``."""

    def __init__(self, failing=None):
        self.failing = dict(failing or {})
        self.commands = []

    def __call__(self, command, should_fail=False, ignore_exit_status=False, max_retries=5, **kwargs):
        self.commands.append(command)
        return self.failing.get(command, 0)


@pytest.fixture
def recorder(monkeypatch):
    rec = Recorder()
    monkeypatch.setattr(setup_steps, "execute_with_retry", rec)
    return rec


def _capture(answers):
    """capture_output stand-in keyed on the exact query."""
    def fake(command, timeout=None):
        return answers.get(command, (1, ""))
    return fake


# =============================================================================
# FAIL-FAST
# =============================================================================

class TestRunStep:

    def test_success(self, recorder):
        assert setup_steps.run_step("docker --version") == 0
        assert recorder.commands == ["docker --version"]

    def test_terminal_failure_aborts_under_errexit(self, monkeypatch):
        monkeypatch.setattr(setup_steps, "execute_with_retry", Recorder({"nvidia-smi": 9}))
        with pytest.raises(CommandFailedError) as exc_info:
            setup_steps.verify_nvidia_environment()
        assert exc_info.value.exit_status == 9

    def test_terminal_failure_returned_without_errexit(self, monkeypatch):
        monkeypatch.setattr(setup_steps, "execute_with_retry", Recorder({"nvidia-smi": 9}))
        set_shell_mode(ShellMode(errexit=False, pipefail=True))
        assert setup_steps.run_step("nvidia-smi") == 9

    def test_require(self):
        setup_steps.require(True, "fine")
        with pytest.raises(CommandFailedError, match="container"):
            setup_steps.require(False, "start container 'ollama'")


# =============================================================================
# PORTS AND PROBES
# =============================================================================

class TestEnsurePortAvailable:

    def test_free_port(self, recorder, monkeypatch):
        monkeypatch.setattr(setup_steps, "capture_output", _capture({}))
        setup_steps.ensure_port_available(3000)
        assert recorder.commands == []

    def test_busy_port_is_freed(self, recorder, monkeypatch):
        monkeypatch.setattr(
            setup_steps, "capture_output", _capture({"sudo lsof -ti:3000": (0, "101\n202\n")})
        )
        setup_steps.ensure_port_available(3000)
        assert recorder.commands == ["sudo kill -9 101 202"]


class TestProbeHttp:

    def test_reachable(self, monkeypatch):
        monkeypatch.setattr(setup_steps.httpx, "get", lambda url, timeout: httpx.Response(200))
        assert setup_steps.probe_http("http://localhost:11434") == 200

    def test_error_status_still_counts_as_answer(self, monkeypatch):
        monkeypatch.setattr(setup_steps.httpx, "get", lambda url, timeout: httpx.Response(503))
        assert setup_steps.probe_http("http://localhost:3000") == 503

    def test_unreachable(self, monkeypatch):
        def refuse(url, timeout):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(setup_steps.httpx, "get", refuse)
        assert setup_steps.probe_http("http://localhost:3000") is None

    def test_wait_for_http_backs_off(self, monkeypatch, no_sleep):
        answers = iter([None, None, 200])
        monkeypatch.setattr(setup_steps, "probe_http", lambda url: next(answers))
        assert setup_steps.wait_for_http("http://localhost:3000", sleep=no_sleep)
        assert no_sleep.delays == [10, 10]


# =============================================================================
# MODELS
# =============================================================================

OLLAMA_LIST = """NAME              ID              SIZE      MODIFIED
gemma2:9b         ff02c3702f32    5.4 GB    2 days ago
llama3:8b         365c0bd3c000    4.7 GB    3 weeks ago
"""


class TestModels:

    def test_list_installed_models(self, monkeypatch):
        monkeypatch.setattr(setup_steps, "capture_output", _capture({"ollama list": (0, OLLAMA_LIST)}))
        assert setup_steps.list_installed_models() == ["gemma2:9b", "llama3:8b"]

    def test_list_installed_models_when_ollama_missing(self, monkeypatch):
        monkeypatch.setattr(setup_steps, "capture_output", _capture({}))
        assert setup_steps.list_installed_models() == []

    def test_pull_defaults_then_installed(self, recorder, monkeypatch):
        monkeypatch.setattr(setup_steps, "capture_output", _capture({"ollama list": (0, OLLAMA_LIST)}))

        pulled = setup_steps.pull_ollama_models(["codegemma:7b", "gemma2:9b"])

        assert pulled == ["codegemma:7b", "gemma2:9b", "llama3:8b"]
        assert recorder.commands == [
            "ollama pull codegemma:7b",
            "ollama pull gemma2:9b",
            "ollama pull llama3:8b",
        ]

    def test_pull_without_installed(self, recorder):
        assert setup_steps.pull_ollama_models(["a"], include_installed=False) == ["a"]
        assert recorder.commands == ["ollama pull a"]

    def test_pull_failure_aborts(self, monkeypatch):
        monkeypatch.setattr(setup_steps, "execute_with_retry", Recorder({"ollama pull bad": 1}))
        with pytest.raises(CommandFailedError):
            setup_steps.pull_ollama_models(["bad", "good"], include_installed=False)


# =============================================================================
# DOCKER INSTALL
# =============================================================================

class TestInstallDocker:

    def test_existing_group_is_not_recreated(self, recorder, monkeypatch):
        monkeypatch.setattr(
            setup_steps, "capture_output", _capture({"getent group docker": (0, "docker:x:999:\n")})
        )
        setup_steps.install_and_configure_docker(user="alice")
        assert "sudo groupadd docker" not in recorder.commands
        assert "sudo usermod -aG docker alice" in recorder.commands

    def test_missing_group_is_created(self, recorder, monkeypatch):
        monkeypatch.setattr(setup_steps, "capture_output", _capture({}))
        setup_steps.install_and_configure_docker()
        assert "sudo groupadd docker" in recorder.commands
        assert "sudo usermod -aG docker $USER" in recorder.commands


# =============================================================================
# FULL SEQUENCE
# =============================================================================

class TestUpdateOpenWebui:
    """Ordering of the provisioning sequence."""

    @pytest.fixture
    def config(self):
        return SetupConfig(
            ollama=ServiceConfig("localhost", 11434, "latest", "ollama", "ollama"),
            open_webui=ServiceConfig("localhost", 3000, "main", "open-webui", "open-webui"),
            default_models=["codegemma:7b"],
        )

    @pytest.fixture
    def journal(self, monkeypatch, recorder):
        events = []
        monkeypatch.setattr(setup_steps, "capture_output", _capture({"ollama list": (0, "NAME\n")}))
        monkeypatch.setattr(setup_steps, "wait_for_http", lambda url, sleep: events.append(f"http {url}") or True)
        monkeypatch.setattr(
            setup_steps.containers,
            "pull_docker_image",
            lambda image, tag, sleep: events.append(f"pull {image}:{tag}") or 0,
        )
        monkeypatch.setattr(
            setup_steps.containers,
            "run_ollama_container",
            lambda cfg, sleep: events.append(f"run {cfg.name}") or True,
        )
        monkeypatch.setattr(
            setup_steps.containers,
            "run_open_webui_container",
            lambda ollama, webui, sleep: events.append(f"run {webui.name}") or True,
        )
        return events

    def test_skip_install_order(self, config, journal, recorder, no_sleep):
        setup_steps.update_open_webui(config, skip_install=True, sleep=no_sleep)

        assert journal == [
            "pull ollama/ollama:latest",
            "run ollama",
            "http http://localhost:11434",
            "pull ghcr.io/open-webui/open-webui:main",
            "run open-webui",
            "http http://localhost:3000",
        ]
        assert "sudo apt-get update" not in recorder.commands
        assert recorder.commands[0] == "docker --version"
        assert "ollama pull codegemma:7b" in recorder.commands

    def test_full_install_runs_apt_first(self, config, journal, recorder, no_sleep):
        setup_steps.update_open_webui(config, sleep=no_sleep)
        assert recorder.commands[0] == "sudo apt-get update"

    def test_container_failure_aborts_before_open_webui(self, config, journal, monkeypatch, no_sleep):
        monkeypatch.setattr(setup_steps.containers, "run_ollama_container", lambda cfg, sleep: False)

        with pytest.raises(CommandFailedError):
            setup_steps.update_open_webui(config, skip_install=True, sleep=no_sleep)

        assert not any("open-webui" in event for event in journal)
