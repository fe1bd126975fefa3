"""Provisioning sequence for the Ollama + Open-WebUI host.

Each step shells out through the retry loop and aborts the sequence on the
first unrecoverable failure (CommandFailedError while errexit is on).
"""

import shlex
import time
from typing import Callable, Optional

import httpx

from webui_setup import containers
from webui_setup.config import ServiceConfig, SetupConfig
from webui_setup.constants import DEFAULT_MAX_RETRIES, OLLAMA_IMAGE, OPEN_WEBUI_IMAGE
from webui_setup.execution_state import CommandRequest
from webui_setup.executor import capture_output, execute
from webui_setup.logger import LogLevel, log_message
from webui_setup.retry import execute_with_retry, poll_until
from webui_setup.shell_mode import check_status

DOCKER_KEYRING = "/etc/apt/keyrings/docker.asc"
NVIDIA_KEYRING = "/usr/share/keyrings/nvidia-container-toolkit-keyring.gpg"
NVIDIA_KEY_ID = "DDCAE044F796ECB0"


def run_step(
    command: str,
    should_fail: bool = False,
    ignore_exit_status: bool = False,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> int:
    """
    Run one setup command with retries and fail fast on a terminal failure.

    Raises:
        CommandFailedError: If retries are exhausted while errexit is on.
    """
    status = execute_with_retry(
        command,
        should_fail=should_fail,
        ignore_exit_status=ignore_exit_status,
        max_retries=max_retries,
    )
    return check_status(command, status)


def require(ok: bool, description: str) -> None:
    """Fail fast when a non-command step (container, probe) reports failure."""
    if not ok:
        log_message(f"Step failed: {description}", LogLevel.ERROR)
        check_status(description, 1)


# =============================================================================
# SYSTEM PACKAGES, DOCKER, NVIDIA
# =============================================================================

def update_system_packages() -> None:
    log_message("Updating system packages...", LogLevel.INFO)
    run_step("sudo apt-get update")
    run_step("sudo apt-get upgrade -y")
    run_step("sudo apt-get dist-upgrade -y")
    run_step("sudo apt-get autoremove -y")
    run_step("sudo apt-get autoclean")
    log_message("System packages updated successfully.", LogLevel.INFO)


def setup_docker_keyring() -> None:
    log_message("Setting up Docker GPG keyring and repository...", LogLevel.INFO)
    run_step("sudo apt-get install -y ca-certificates curl")
    run_step("sudo install -m 0755 -d /etc/apt/keyrings")
    run_step(f"sudo curl -fsSL https://download.docker.com/linux/ubuntu/gpg -o {DOCKER_KEYRING}")
    run_step(f"sudo chmod a+r {DOCKER_KEYRING}")
    run_step(
        'echo "deb [arch=$(dpkg --print-architecture) '
        f'signed-by={DOCKER_KEYRING}] https://download.docker.com/linux/ubuntu '
        '$(. /etc/os-release && echo "$VERSION_CODENAME") stable" '
        "| sudo tee /etc/apt/sources.list.d/docker.list > /dev/null"
    )
    log_message("Docker GPG keyring and repository setup completed successfully.", LogLevel.INFO)


def verify_nvidia_environment() -> None:
    log_message("Verifying NVIDIA environment...", LogLevel.INFO)
    run_step("nvidia-smi")


def install_nvidia_container_toolkit() -> None:
    log_message("Installing NVIDIA Container Toolkit...", LogLevel.INFO)
    run_step(
        "curl -fsSL https://nvidia.github.io/libnvidia-container/gpgkey "
        f"| sudo gpg --dearmor --yes -o {NVIDIA_KEYRING}"
    )
    run_step(
        "curl -s -L https://nvidia.github.io/libnvidia-container/stable/deb/nvidia-container-toolkit.list "
        f"| sed 's#deb https://#deb [signed-by={NVIDIA_KEYRING}] https://#g' "
        "| sudo tee /etc/apt/sources.list.d/nvidia-container-toolkit.list > /dev/null"
    )
    run_step(f"sudo apt-key adv --keyserver keyserver.ubuntu.com --recv-keys {NVIDIA_KEY_ID}")
    run_step("sudo apt-get update")
    run_step("sudo DEBIAN_FRONTEND=noninteractive apt-get install -y nvidia-container-toolkit")
    verify_nvidia_environment()


def install_and_configure_docker(user: Optional[str] = None) -> None:
    log_message("Installing and configuring Docker...", LogLevel.INFO)
    run_step("sudo apt-get update")
    run_step("sudo apt-get install -y docker-ce docker-ce-cli containerd.io docker-compose-plugin")
    run_step("sudo nvidia-ctk runtime configure --runtime=docker")

    status, _ = capture_output("getent group docker")
    if status != 0:
        run_step("sudo groupadd docker")
    else:
        log_message("Group 'docker' already exists. Skipping creation.", LogLevel.INFO)

    target = shlex.quote(user) if user else "$USER"
    run_step(f"sudo usermod -aG docker {target}")
    run_step("sudo systemctl restart docker")
    run_step("sudo docker run hello-world")
    log_message("Docker installation and configuration completed successfully.", LogLevel.INFO)


def verify_docker_environment() -> None:
    log_message("Verifying Docker environment...", LogLevel.INFO)
    run_step("docker --version")
    run_step("docker context ls")
    run_step("sudo lsof -i -P -n | grep LISTEN", ignore_exit_status=True)


# =============================================================================
# PORTS AND PROBES
# =============================================================================

def ensure_port_available(port: int) -> None:
    """Kill whatever process currently listens on ``port``."""
    log_message(f"Checking if port {port} is available...", LogLevel.INFO)

    status, output = capture_output(f"sudo lsof -ti:{int(port)}")
    pids = [pid for pid in output.split() if pid.isdigit()]

    if status != 0 or not pids:
        log_message(f"Port {port} is available.", LogLevel.INFO)
        return

    log_message(
        f"Port {port} is already in use by PID {' '.join(pids)}. Stopping process...",
        LogLevel.WARNING,
    )
    run_step(f"sudo kill -9 {' '.join(pids)}")
    log_message(f"Freed up port {port}.", LogLevel.INFO)


def probe_http(url: str, timeout: float = 5.0) -> Optional[int]:
    """
    GET ``url`` and return the HTTP status code, or None if unreachable.
    """
    try:
        response = httpx.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        log_message(f"HTTP probe of {url} failed: {e}", LogLevel.DEBUG_1)
        return None
    log_message(f"HTTP probe of {url} returned {response.status_code}", LogLevel.INFO)
    return response.status_code


def wait_for_http(url: str, sleep: Callable[[float], None] = time.sleep) -> bool:
    return poll_until(lambda: probe_http(url) is not None, f"{url} to answer", sleep=sleep)


# =============================================================================
# SERVICE VERIFICATION
# =============================================================================

def verify_ollama_setup(cfg: ServiceConfig, sleep: Callable[[float], None] = time.sleep) -> None:
    log_message(f"Verifying Ollama setup at {cfg.url}...", LogLevel.INFO)
    require(wait_for_http(cfg.url, sleep=sleep), f"Ollama did not answer at {cfg.url}")
    run_step("ollama list")
    run_step("ollama ps")
    run_step(f"ss -tuln | grep {int(cfg.port)}")
    run_step(f"docker logs {shlex.quote(cfg.name)}")
    log_message("Ollama setup verification completed successfully.", LogLevel.INFO)


def verify_open_webui_setup(cfg: ServiceConfig, sleep: Callable[[float], None] = time.sleep) -> None:
    log_message(f"Verifying Open-WebUI setup on {cfg.url}...", LogLevel.INFO)
    require(wait_for_http(cfg.url, sleep=sleep), f"Open-WebUI did not answer at {cfg.url}")
    run_step(f"docker logs {shlex.quote(cfg.name)}")
    log_message("Open-WebUI setup verified successfully.", LogLevel.INFO)


# =============================================================================
# MODELS
# =============================================================================

def list_installed_models() -> list[str]:
    """Model names from ``ollama list`` (header row skipped)."""
    status, output = capture_output("ollama list")
    if status != 0:
        log_message("Could not list installed Ollama models.", LogLevel.WARNING)
        return []
    models = []
    for line in output.splitlines()[1:]:
        fields = line.split()
        if fields:
            models.append(fields[0])
    return models


def merge_models(defaults: list[str], installed: list[str]) -> list[str]:
    """
    Defaults first, then any installed model not already listed.

    Examples:
        >>> merge_models(["a", "b"], ["b", "c"])
        ['a', 'b', 'c']
    """
    merged = []
    for model in [*defaults, *installed]:
        if model not in merged:
            merged.append(model)
    return merged


def pull_ollama_models(models: list[str], include_installed: bool = True) -> list[str]:
    """
    Pull each model with retries. Installed models are refreshed too.

    Returns:
        The models that were pulled.
    """
    log_message("Pulling Ollama models...", LogLevel.INFO)

    if include_installed:
        log_message("Fetching installed models...", LogLevel.INFO)
        models = merge_models(models, list_installed_models())

    for model in models:
        log_message(f"Pulling model: {model}", LogLevel.INFO)
        run_step(f"ollama pull {shlex.quote(model)}")

    log_message("Model pulling completed.", LogLevel.INFO)
    return models


def run_ollama_model(model: str) -> int:
    """
    Run ``ollama run <model> --verbose`` once, without retries.

    Returns:
        The executor's return code.
    """
    command = f"ollama run {shlex.quote(model)} --verbose"
    log_message(f"Selected model: {model}", LogLevel.INFO)
    return execute(CommandRequest(command=command)).return_code


# =============================================================================
# FULL SEQUENCE
# =============================================================================

def install_host_packages() -> None:
    update_system_packages()
    setup_docker_keyring()
    install_nvidia_container_toolkit()
    install_and_configure_docker()


def update_open_webui(
    config: SetupConfig,
    skip_install: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Provision (or refresh) both containers from ``config``.

    Raises:
        CommandFailedError: On the first unrecoverable step.
    """
    if not skip_install:
        install_host_packages()

    verify_docker_environment()

    ollama = config.ollama
    open_webui = config.open_webui

    require(
        containers.pull_docker_image(OLLAMA_IMAGE, ollama.tag, sleep=sleep) == 0,
        f"pull {OLLAMA_IMAGE}:{ollama.tag}",
    )
    ensure_port_available(ollama.port)
    require(containers.run_ollama_container(ollama, sleep=sleep), f"start container '{ollama.name}'")
    verify_ollama_setup(ollama, sleep=sleep)
    pull_ollama_models(config.default_models)

    require(
        containers.pull_docker_image(OPEN_WEBUI_IMAGE, open_webui.tag, sleep=sleep) == 0,
        f"pull {OPEN_WEBUI_IMAGE}:{open_webui.tag}",
    )
    ensure_port_available(open_webui.port)
    require(
        containers.run_open_webui_container(ollama, open_webui, sleep=sleep),
        f"start container '{open_webui.name}'",
    )
    verify_open_webui_setup(open_webui, sleep=sleep)

    log_message("Open-WebUI update completed successfully.", LogLevel.INFO)
