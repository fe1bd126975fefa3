"""Constants for the setup runner."""

# Retry policy: Fibonacci backoff seeded at (10, 10) seconds
DEFAULT_MAX_RETRIES = 5
FIB_SEED = (10, 10)

# Executor status conventions
UNEXPECTED_SUCCESS_STATUS = 1
TIMEOUT_STATUS = 124  # matches timeout(1)
SPAWN_FAILURE_STATUS = 127

SHELL = "bash"

# Log line layout
LOG_DATE_FORMAT = "%Y.%m.%d:%H:%M:%S"
LEVEL_PREFIX_PAD_STRING = "WARNING:"


# Service defaults, overridable from the config file

DEFAULT_CONFIG_FILE = "update_open-webui.config"

OLLAMA_IMAGE = "ollama/ollama"
OPEN_WEBUI_IMAGE = "ghcr.io/open-webui/open-webui"

OLLAMA_DEFAULTS = {
    "host": "localhost",
    "port": 11434,
    "tag": "latest",
    "name": "ollama",
    "volume": "ollama",
}

OPEN_WEBUI_DEFAULTS = {
    "host": "localhost",
    "port": 3000,
    "tag": "latest",
    "name": "open-webui",
    "volume": "open-webui",
}

DEFAULT_OLLAMA_MODELS = [
    "codegemma:7b",
    "gemma2:9b",
]

