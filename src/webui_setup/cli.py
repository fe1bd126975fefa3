"""CLI entrypoint for the setup runner."""

from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from webui_setup.config import ConfigError, load_config
from webui_setup.constants import DEFAULT_CONFIG_FILE, DEFAULT_MAX_RETRIES
from webui_setup.logger import configure_logging

# Load .env file on CLI startup
load_dotenv()


@click.group()
@click.version_option(package_name="webui-setup")
@click.option(
    "--verbosity",
    type=click.IntRange(0, 4),
    default=None,
    help="Log verbosity: 0=error, 1=warning, 2=info, 3=debug, 4=debug2 (default: VERBOSITY or 2).",
)
@click.option("--debug/--no-debug", default=None, help="Add callsite traces to log lines (default: DEBUG).")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Append log lines here (default: next to the invoked script).",
)
def cli(verbosity: Optional[int], debug: Optional[bool], log_file: Optional[str]):
    """Provision Docker, Ollama and Open-WebUI with retrying shell commands."""
    try:
        configure_logging(
            log_file=Path(log_file) if log_file else None,
            verbosity=verbosity,
            debug=debug,
        )
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)


@cli.command("run")
@click.argument("command")
@click.option("--should-fail", is_flag=True, help="The command is expected to exit non-zero.")
@click.option("--ignore-exit-status", is_flag=True, help="Treat any exit status as success.")
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=DEFAULT_MAX_RETRIES,
    show_default=True,
    help="Retries after the first attempt (Fibonacci backoff from 10s).",
)
@click.option("--timeout", type=float, default=None, help="Kill the command after this many seconds.")
@click.option("--no-retry", is_flag=True, help="Run once and exit with the executor's status.")
def run_command(
    command: str,
    should_fail: bool,
    ignore_exit_status: bool,
    max_retries: int,
    timeout: Optional[float],
    no_retry: bool,
):
    """Run COMMAND through bash with retries.

    COMMAND: Shell text, passed to ``bash -c`` as-is
    """
    from webui_setup.execution_state import CommandRequest
    from webui_setup.executor import execute
    from webui_setup.retry import execute_with_retry

    if no_retry:
        result = execute(CommandRequest(
            command=command,
            should_fail=should_fail,
            ignore_exit_status=ignore_exit_status,
            timeout=timeout,
        ))
        raise SystemExit(result.return_code)

    status = execute_with_retry(
        command,
        should_fail=should_fail,
        ignore_exit_status=ignore_exit_status,
        max_retries=max_retries,
        timeout=timeout,
    )
    raise SystemExit(0 if status == 0 else 1)


@cli.command("steps")
@click.argument("step_file", type=click.Path(exists=True))
@click.option(
    "--output-dir",
    type=click.Path(),
    default="execution/reports",
    help="Directory for execution reports (default: execution/reports)",
)
def run_steps_command(step_file: str, output_dir: str):
    """Run every command in a step definition file, stopping at the first failure.

    STEP_FILE: Path to step definition (YAML or JSON)

    Step definition format:

    \b
        task_id: open-webui-refresh
        max_retries: 5  # optional
        steps:
          - command: docker --version
          - command: docker rm -f scratch
            ignore_exit_status: true
    """
    from webui_setup.step_runner import run_steps

    step_path = Path(step_file).resolve()
    out_path = Path(output_dir).resolve()

    click.echo(f"Executing steps: {step_path}")
    click.echo()

    try:
        final_state = run_steps(step_path, out_path)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if final_state.status == "SUCCESS":
        raise SystemExit(0)
    raise SystemExit(1)


@cli.command("observe")
@click.argument("task_id")
@click.option(
    "--reports-dir",
    type=click.Path(),
    default="execution/reports",
    help="Directory for execution reports",
)
def observe_task(task_id: str, reports_dir: str):
    """Show a summary of a task's step runs.

    TASK_ID: The task identifier to observe
    """
    from webui_setup.observe import print_summary

    print_summary(task_id=task_id, reports_dir=Path(reports_dir))


@cli.command("check-config")
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="KEY=value service configuration file.",
)
def check_config(config_path: str):
    """Validate the service configuration file and print the resolved values."""
    try:
        config = load_config(Path(config_path))
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    click.echo("Configuration loaded successfully!")
    for label, svc in (("Ollama", config.ollama), ("Open-WebUI", config.open_webui)):
        click.echo(f"  {label}:")
        click.echo(f"    url:       {svc.url}")
        click.echo(f"    container: {svc.name} (tag {svc.tag})")
        click.echo(f"    volume:    {svc.volume}")
    click.echo(f"  Default models: {', '.join(config.default_models)}")


@cli.command("update-open-webui")
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="KEY=value service configuration file.",
)
@click.option("--skip-install", is_flag=True, help="Skip apt, Docker and NVIDIA installation.")
def update_open_webui_command(config_path: str, skip_install: bool):
    """Install prerequisites, then (re)start the Ollama and Open-WebUI containers."""
    from webui_setup.setup_steps import update_open_webui
    from webui_setup.shell_mode import CommandFailedError

    try:
        config = load_config(Path(config_path))
        update_open_webui(config, skip_install=skip_install)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    except CommandFailedError as e:
        click.echo(f"Setup aborted: {e}", err=True)
        raise SystemExit(1)
    except KeyboardInterrupt:
        click.echo("\nSetup cancelled.")
        raise SystemExit(1)

    click.echo("Open-WebUI update completed successfully.")


@cli.command("pull-models")
@click.argument("models", nargs=-1)
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="KEY=value service configuration file (used when no MODEL is given).",
)
@click.option("--no-installed", is_flag=True, help="Do not refresh models that are already installed.")
def pull_models(models: tuple, config_path: str, no_installed: bool):
    """Pull Ollama models with retries.

    MODELS: Model names (default: DEFAULT_OLLAMA_MODELS from the config file)
    """
    from webui_setup.setup_steps import pull_ollama_models
    from webui_setup.shell_mode import CommandFailedError

    try:
        wanted = list(models) or load_config(Path(config_path)).default_models
        pulled = pull_ollama_models(wanted, include_installed=not no_installed)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)
    except CommandFailedError as e:
        click.echo(f"Model pull aborted: {e}", err=True)
        raise SystemExit(1)

    click.echo(f"Pulled {len(pulled)} model(s): {', '.join(pulled)}")


@cli.command("run-model")
@click.option("-m", "--model", default=None, help="Model to run (skips the prompt).")
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="KEY=value service configuration file (first DEFAULT_OLLAMA_MODELS entry is the default).",
)
def run_model(model: Optional[str], config_path: str):
    """Pick an installed Ollama model and run it with ``ollama run --verbose``."""
    from webui_setup.setup_steps import list_installed_models, probe_http, run_ollama_model

    try:
        config = load_config(Path(config_path))
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    if probe_http(config.ollama.url) is None:
        click.echo(f"Ollama is not answering at {config.ollama.url}", err=True)
        raise SystemExit(1)

    if not model:
        click.echo("Available models...")
        for name in list_installed_models():
            click.echo(f"  {name}")
        model = click.prompt("Enter the model name to use", default=config.default_models[0])

    click.echo(f"Running: ollama run {model} --verbose")
    raise SystemExit(run_ollama_model(model))


if __name__ == "__main__":
    cli()
