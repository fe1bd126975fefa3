"""Tests for Docker container lifecycle helpers (docker is never invoked)."""

import pytest

from webui_setup import containers, retry
from webui_setup.config import ServiceConfig
from webui_setup.execution_state import ExecutionResult, Outcome


class FakeDocker:
    """Answers ``docker ps`` queries from a table of container states."""

    def __init__(self, running=(), exited=(), status="Up 2 seconds"):
        self.running = set(running)
        self.exited = set(exited)
        self.status = status
        self.queries = []
        self.commands = []
        self.runs = []
        self.sleeps = []

    def capture_output(self, command, timeout=None):
        self.queries.append(command)
        name = command.split("name=^", 1)[1].split("$", 1)[0]
        if "{{.Status}}" in command:
            return 0, (self.status + "\n") if name in self.running else ""
        if "status=exited" in command:
            return 0, (name + "\n") if name in self.exited else ""
        if " -a " in command:
            return 0, (name + "\n") if name in self.running | self.exited else ""
        return 0, (name + "\n") if name in self.running else ""

    def execute_with_retry(self, command, **kwargs):
        self.sleeps.append(kwargs.get("sleep"))
        self.commands.append(command)
        if command.startswith("docker stop "):
            name = command.split()[-1]
            self.running.discard(name)
            self.exited.add(name)
        elif command.startswith("docker rm -f "):
            name = command.split()[-1]
            self.running.discard(name)
            self.exited.discard(name)
        return 0

    def execute(self, request, saved_mode=None):
        self.runs.append(request.command)
        self.running.add(request.command.split("--name ", 1)[1].split()[0])
        return ExecutionResult(exit_status=0, output=["abc123"], outcome=Outcome.SUCCESS)


@pytest.fixture
def docker(monkeypatch):
    fake = FakeDocker()
    monkeypatch.setattr(containers, "capture_output", fake.capture_output)
    monkeypatch.setattr(containers, "execute_with_retry", fake.execute_with_retry)
    monkeypatch.setattr(containers, "execute", fake.execute)
    return fake


OLLAMA = ServiceConfig("localhost", 11434, "latest", "ollama", "ollama")
WEBUI = ServiceConfig("localhost", 3000, "main", "open-webui", "open-webui")


# =============================================================================
# QUERIES
# =============================================================================

class TestQueries:
    """Exact-name container state queries."""

    def test_exists_running_stopped(self, docker):
        docker.running = {"ollama"}
        docker.exited = {"old"}

        assert containers.container_exists("ollama")
        assert containers.container_exists("old")
        assert not containers.container_exists("missing")
        assert containers.container_is_running("ollama")
        assert not containers.container_is_running("old")
        assert containers.container_is_stopped("old")
        assert not containers.container_is_stopped("ollama")

    def test_name_filter_is_anchored(self, docker):
        containers.container_exists("ollama")
        assert "'name=^ollama$'" in docker.queries[0]

    def test_status_of_running_container(self, docker):
        docker.running = {"ollama"}
        assert containers.container_status("ollama") == "Up 2 seconds"
        assert containers.container_status("missing") == ""

    def test_failed_query_means_absent(self, monkeypatch):
        monkeypatch.setattr(containers, "capture_output", lambda command, timeout=None: (1, "ollama\n"))
        assert not containers.container_exists("ollama")
        assert containers.container_status("ollama") == ""


# =============================================================================
# ACTIONS
# =============================================================================

class TestStopAndRemove:

    def test_missing_container_is_skipped(self, docker, no_sleep):
        assert containers.stop_and_remove_container("ollama", sleep=no_sleep) is True
        assert docker.commands == []

    def test_running_container_stopped_then_removed(self, docker, no_sleep):
        docker.running = {"ollama"}

        assert containers.stop_and_remove_container("ollama", sleep=no_sleep) is True

        assert docker.commands == ["docker ps", "docker stop ollama", "docker rm -f ollama"]
        assert not containers.container_exists("ollama")
        assert no_sleep.delays == []

    def test_exited_container_only_removed(self, docker, no_sleep):
        docker.exited = {"ollama"}

        assert containers.stop_and_remove_container("ollama", sleep=no_sleep) is True
        assert "docker stop ollama" not in docker.commands
        assert "docker rm -f ollama" in docker.commands

    def test_failed_remove(self, docker, monkeypatch):
        docker.exited = {"ollama"}
        monkeypatch.setattr(containers, "execute_with_retry", lambda command, **kwargs: 1)
        assert containers.remove_container("ollama") is False


class TestInjectedSleep:
    """Every retried docker command backs off through the caller's sleep."""

    def test_sleep_reaches_every_retried_command(self, docker, no_sleep):
        docker.running = {"ollama"}

        containers.pull_docker_image("ollama/ollama", "latest", sleep=no_sleep)
        containers.run_ollama_container(OLLAMA, sleep=no_sleep)

        assert docker.commands == [
            "docker pull ollama/ollama:latest",
            "docker ps",
            "docker stop ollama",
            "docker rm -f ollama",
        ]
        assert docker.sleeps == [no_sleep] * 4

    def test_failing_pull_backs_off_without_real_sleep(self, monkeypatch, no_sleep):
        monkeypatch.setattr(
            retry,
            "execute",
            lambda request, saved_mode=None: ExecutionResult(
                exit_status=1, output=[], outcome=Outcome.UNEXPECTED_FAILURE
            ),
        )

        assert containers.pull_docker_image("ollama/ollama", "latest", sleep=no_sleep) == 1
        assert no_sleep.delays == [10, 10, 20, 30, 50]


class TestWaitForStatusUp:
    """Readiness polling uses the Fibonacci backoff."""

    def test_already_up(self, docker, no_sleep):
        docker.running = {"ollama"}
        assert containers.wait_for_container_status_up("ollama", sleep=no_sleep)
        assert no_sleep.delays == []

    def test_comes_up_after_two_polls(self, docker, monkeypatch, no_sleep):
        statuses = iter(["", "Restarting (1) 1 second ago", "Up 1 second"])
        monkeypatch.setattr(containers, "container_status", lambda name: next(statuses))

        assert containers.wait_for_container_status_up("ollama", sleep=no_sleep)
        assert no_sleep.delays == [10, 10]

    def test_never_up(self, docker, no_sleep):
        assert not containers.wait_for_container_status_up("ollama", sleep=no_sleep)
        assert no_sleep.delays == [10, 10, 20, 30, 50]


# =============================================================================
# SERVICE CONTAINERS
# =============================================================================

class TestRunCommands:

    def test_ollama_command(self):
        command = containers.build_ollama_run_command(OLLAMA)
        assert command == (
            "docker run -d --gpus all --network=host --volume ollama:/root/.ollama "
            "--env OLLAMA_HOST=localhost:11434 --restart always --name ollama "
            "ollama/ollama:latest"
        )

    def test_open_webui_command(self):
        command = containers.build_open_webui_run_command(OLLAMA, WEBUI)
        assert "--env OLLAMA_BASE_URL=http://localhost:11434" in command
        assert "--env PORT=3000" in command
        assert "--volume open-webui:/app/backend/data" in command
        assert command.endswith("--name open-webui --restart always ghcr.io/open-webui/open-webui:main")


class TestRunServiceContainers:
    """Stop, remove, run once, then wait for 'Up'."""

    def test_replaces_running_ollama(self, docker, no_sleep):
        docker.running = {"ollama"}

        assert containers.run_ollama_container(OLLAMA, sleep=no_sleep) is True

        assert "docker rm -f ollama" in docker.commands
        assert docker.runs == [containers.build_ollama_run_command(OLLAMA)]
        assert containers.container_is_running("ollama")

    def test_fresh_open_webui(self, docker, no_sleep):
        assert containers.run_open_webui_container(OLLAMA, WEBUI, sleep=no_sleep) is True
        assert docker.runs == [containers.build_open_webui_run_command(OLLAMA, WEBUI)]

    def test_docker_run_failure_is_not_retried(self, docker, monkeypatch, no_sleep):
        calls = []

        def failing_execute(request, saved_mode=None):
            calls.append(request.command)
            return ExecutionResult(exit_status=125, output=[], outcome=Outcome.UNEXPECTED_FAILURE)

        monkeypatch.setattr(containers, "execute", failing_execute)

        assert containers.run_ollama_container(OLLAMA, sleep=no_sleep) is False
        assert len(calls) == 1
        assert no_sleep.delays == []
