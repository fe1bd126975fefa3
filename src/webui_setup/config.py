"""Configuration loading for the setup CLI."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values, load_dotenv

from webui_setup.constants import (
    DEFAULT_OLLAMA_MODELS,
    OLLAMA_DEFAULTS,
    OPEN_WEBUI_DEFAULTS,
)


class ConfigError(Exception):
    """Raised when configuration is missing or malformed."""
    pass


# =============================================================================
# ENVIRONMENT SETTINGS
# =============================================================================

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Runtime settings loaded from environment."""

    debug: bool = False
    verbosity: Optional[int] = None
    log_file: Optional[Path] = None


def load_settings() -> Settings:
    """
    Load runtime settings from environment variables (and a .env file).

    Reads:
        DEBUG: true/1/yes enables callsite traces in log lines
        VERBOSITY: integer log level (0=error ... 4=debug2)
        WEBUI_SETUP_LOG_FILE: override for the log file path

    Raises:
        ConfigError: If VERBOSITY is not an integer.
    """
    load_dotenv()

    debug = os.environ.get("DEBUG", "false").strip().lower() in _TRUTHY

    verbosity = None
    raw_verbosity = os.environ.get("VERBOSITY", "").strip()
    if raw_verbosity:
        try:
            verbosity = int(raw_verbosity)
        except ValueError:
            raise ConfigError(f"VERBOSITY must be an integer, got: {raw_verbosity!r}")

    log_file = os.environ.get("WEBUI_SETUP_LOG_FILE", "").strip()

    return Settings(
        debug=debug,
        verbosity=verbosity,
        log_file=Path(log_file) if log_file else None,
    )


# =============================================================================
# SERVICE CONFIG FILE
# =============================================================================

@dataclass
class ServiceConfig:
    """Host/port/tag/name/volume for one named container."""

    host: str
    port: int
    tag: str
    name: str
    volume: str

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"


@dataclass
class SetupConfig:
    ollama: ServiceConfig
    open_webui: ServiceConfig
    default_models: list[str] = field(default_factory=lambda: list(DEFAULT_OLLAMA_MODELS))


def _parse_port(key: str, raw: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer port, got: {raw!r}")
    if not 0 < port < 65536:
        raise ConfigError(f"{key} out of range (1-65535): {port}")
    return port


def _service_config(values: dict, prefix: str, defaults: dict) -> ServiceConfig:
    def get(suffix: str, default_key: str) -> str:
        value = values.get(f"{prefix}_{suffix}")
        if value is None or value == "":
            return str(defaults[default_key])
        return value

    return ServiceConfig(
        host=get("HOST", "host"),
        port=_parse_port(f"{prefix}_PORT", get("PORT", "port")),
        tag=get("CONTAINER_TAG", "tag"),
        name=get("CONTAINER_NAME", "name"),
        volume=get("VOLUME_NAME", "volume"),
    )


def parse_model_list(raw: Optional[str]) -> list[str]:
    """
    Split a model list on commas and/or whitespace.

    Examples:
        >>> parse_model_list("codegemma:7b gemma2:9b")
        ['codegemma:7b', 'gemma2:9b']
        >>> parse_model_list("a, b,,c")
        ['a', 'b', 'c']
    """
    if not raw:
        return []
    return [m for m in re.split(r"[,\s]+", raw.strip()) if m]


def load_config(path: Path) -> SetupConfig:
    """
    Load the KEY=value service configuration file.

    Quoted values, # comments and blank lines are handled by python-dotenv.
    Missing keys fall back to the defaults in constants.

    Args:
        path: Path to the config file.

    Returns:
        Resolved SetupConfig.

    Raises:
        ConfigError: If the file is missing or a port is invalid.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    values = dotenv_values(path)

    models = parse_model_list(values.get("DEFAULT_OLLAMA_MODELS"))

    return SetupConfig(
        ollama=_service_config(values, "OLLAMA", OLLAMA_DEFAULTS),
        open_webui=_service_config(values, "OPEN_WEBUI", OPEN_WEBUI_DEFAULTS),
        default_models=models or list(DEFAULT_OLLAMA_MODELS),
    )
