"""Lifecycle helpers for single named Docker containers.

Queries go through ``capture_output``; anything that changes state goes
through the retry loop.
"""

import shlex
import time
from typing import Callable

from webui_setup.config import ServiceConfig
from webui_setup.constants import OLLAMA_IMAGE, OPEN_WEBUI_IMAGE
from webui_setup.execution_state import CommandRequest
from webui_setup.executor import capture_output, execute
from webui_setup.logger import LogLevel, log_message
from webui_setup.retry import execute_with_retry, poll_until


# =============================================================================
# QUERIES
# =============================================================================

def _ps_names(name: str, all_containers: bool = False, extra_filters: str = "") -> list[str]:
    """Names returned by ``docker ps`` filtered to an exact container name."""
    flags = "-a " if all_containers else ""
    command = (
        f"docker ps {flags}--filter {shlex.quote(f'name=^{name}$')} {extra_filters}"
        f"--format '{{{{.Names}}}}'"
    )
    status, output = capture_output(command)
    if status != 0:
        return []
    return [line.strip() for line in output.splitlines() if line.strip()]


def container_exists(name: str) -> bool:
    return name in _ps_names(name, all_containers=True)


def container_is_running(name: str) -> bool:
    return name in _ps_names(name)


def container_is_stopped(name: str) -> bool:
    """True when the container is not running and is in the exited state."""
    log_message(f"Checking if container '{name}' is stopped and exited...", LogLevel.INFO)
    if container_is_running(name):
        return False
    return name in _ps_names(name, all_containers=True, extra_filters="--filter status=exited ")


def container_status(name: str) -> str:
    """
    Status string of a running container (e.g. ``Up 3 minutes``), or "".
    """
    command = (
        f"docker ps --filter {shlex.quote(f'name=^{name}$')} "
        f"--format '{{{{.Status}}}}'"
    )
    status, output = capture_output(command)
    if status != 0:
        return ""
    lines = output.splitlines()
    return lines[0].strip() if lines else ""


# =============================================================================
# ACTIONS
# =============================================================================

def pull_docker_image(
    image: str,
    tag: str = "latest",
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    log_message(f"Pulling Docker image: {image}:{tag}...", LogLevel.INFO)
    status = execute_with_retry(f"docker pull {shlex.quote(f'{image}:{tag}')}", sleep=sleep)
    if status == 0:
        log_message(f"Docker image {image}:{tag} pulled successfully.", LogLevel.INFO)
    return status


def list_running_containers(sleep: Callable[[float], None] = time.sleep) -> int:
    log_message("Listing running containers...", LogLevel.INFO)
    return execute_with_retry("docker ps", sleep=sleep)


def try_stop_container(name: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    log_message(f"Stopping container '{name}'...", LogLevel.INFO)
    return execute_with_retry(f"docker stop {shlex.quote(name)}", sleep=sleep) == 0


def wait_for_container_status_up(name: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    log_message(f"Waiting for container '{name}' to start...", LogLevel.INFO)

    def is_up() -> bool:
        status = container_status(name)
        if status.startswith("Up"):
            log_message(f"Container '{name}' is running with status '{status}'.", LogLevel.INFO)
            return True
        log_message(f"Container '{name}' current status: '{status}'.", LogLevel.DEBUG_1)
        return False

    return poll_until(is_up, f"container '{name}' to report status 'Up'", sleep=sleep)


def wait_for_container_stop(name: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    log_message(f"Waiting for container '{name}' to stop and exit...", LogLevel.INFO)
    stopped = poll_until(
        lambda: container_is_stopped(name),
        f"container '{name}' to stop and exit",
        sleep=sleep,
    )
    if stopped:
        log_message(
            f"Container '{name}' has stopped successfully and is in the exited state.",
            LogLevel.INFO,
        )
    return stopped


def stop_container(name: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    """
    Stop ``name`` if it exists and is running.

    Returns:
        True when the container is absent, already stopped, or now stopped.
    """
    list_running_containers(sleep=sleep)

    if not container_exists(name):
        log_message(f"Container '{name}' does not exist. Skipping stop step.", LogLevel.WARNING)
        return True

    if not container_is_running(name):
        log_message(f"Container '{name}' is not running. Skipping stop step.", LogLevel.WARNING)
        return True

    if not try_stop_container(name, sleep=sleep):
        log_message(f"Failed to issue stop command for container '{name}'.", LogLevel.ERROR)
        return False

    return wait_for_container_stop(name, sleep=sleep)


def remove_container(name: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    log_message(f"Removing container '{name}'...", LogLevel.INFO)

    if not container_exists(name):
        log_message(f"Container '{name}' not found. Skipping remove step.", LogLevel.WARNING)
        return True

    if execute_with_retry(f"docker rm -f {shlex.quote(name)}", sleep=sleep) != 0:
        log_message(f"Failed to remove container '{name}'.", LogLevel.ERROR)
        return False

    log_message(f"Container '{name}' removed successfully.", LogLevel.INFO)
    return True


def stop_and_remove_container(name: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    log_message(f"Stopping and removing container '{name}'...", LogLevel.INFO)

    if not container_exists(name):
        log_message(
            f"Container '{name}' does not exist. Skipping stop and remove steps.",
            LogLevel.WARNING,
        )
        return True

    if not stop_container(name, sleep=sleep):
        log_message(f"Failed to stop container '{name}'.", LogLevel.ERROR)
        return False

    return remove_container(name, sleep=sleep)


# =============================================================================
# SERVICE CONTAINERS
# =============================================================================

def build_ollama_run_command(cfg: ServiceConfig) -> str:
    """
    ``docker run`` line for the Ollama inference server.

    Examples:
        >>> from webui_setup.config import ServiceConfig
        >>> cfg = ServiceConfig("localhost", 11434, "latest", "ollama", "ollama")
        >>> build_ollama_run_command(cfg).split()[:4]
        ['docker', 'run', '-d', '--gpus']
    """
    return shlex.join([
        "docker", "run", "-d",
        "--gpus", "all",
        "--network=host",
        "--volume", f"{cfg.volume}:/root/.ollama",
        "--env", f"OLLAMA_HOST={cfg.host}:{cfg.port}",
        "--restart", "always",
        "--name", cfg.name,
        f"{OLLAMA_IMAGE}:{cfg.tag}",
    ])


def build_open_webui_run_command(ollama: ServiceConfig, open_webui: ServiceConfig) -> str:
    """``docker run`` line for Open-WebUI, pointed at the Ollama URL."""
    return shlex.join([
        "docker", "run", "-d",
        "--gpus", "all",
        "--network=host",
        "--volume", f"{open_webui.volume}:/app/backend/data",
        "--env", f"OLLAMA_BASE_URL={ollama.url}",
        "--env", f"PORT={open_webui.port}",
        "--name", open_webui.name,
        "--restart", "always",
        f"{OPEN_WEBUI_IMAGE}:{open_webui.tag}",
    ])


def _replace_container(name: str, run_command: str, label: str, sleep: Callable[[float], None]) -> bool:
    log_message(f"Stopping and removing {label} container...", LogLevel.INFO)
    if not stop_and_remove_container(name, sleep=sleep):
        return False

    # docker run is not retried: a second attempt would collide on the name
    log_message(f"Running {label} container...", LogLevel.INFO)
    result = execute(CommandRequest(command=run_command))
    if not result.succeeded:
        log_message(f"Failed to start {label} container.", LogLevel.ERROR)
        return False

    if not wait_for_container_status_up(name, sleep=sleep):
        return False

    log_message(f"{label} container started successfully.", LogLevel.INFO)
    return True


def run_ollama_container(cfg: ServiceConfig, sleep: Callable[[float], None] = time.sleep) -> bool:
    return _replace_container(cfg.name, build_ollama_run_command(cfg), "Ollama", sleep)


def run_open_webui_container(
    ollama: ServiceConfig,
    open_webui: ServiceConfig,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    return _replace_container(
        open_webui.name,
        build_open_webui_run_command(ollama, open_webui),
        "Open-WebUI",
        sleep,
    )
