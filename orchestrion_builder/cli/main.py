"""Click-based CLI used as a build step around orchestrion-instrumented compiles."""

from __future__ import annotations

import logging
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path

import click

from orchestrion_builder.config import JobserverSettings, load_settings
from orchestrion_builder.runner import (
    CommandSpec,
    JobserverError,
    compose_command_env,
    ensure_go_mod,
    execute_with_jobserver,
    start_jobserver,
)


@dataclass
class CLIState:
    settings: JobserverSettings
    verbose: bool = False


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="TOML file with a [jobserver] table.",
)
@click.option("--start-timeout", type=float, help="Seconds to wait for the jobserver URL.")
@click.option("-v", "--verbose", is_flag=True, default=False, help="Log diagnostics to stderr.")
@click.pass_context
def app(
    ctx: click.Context, config_path: Path | None, start_timeout: float | None, verbose: bool
) -> None:
    """Supervise the orchestrion jobserver for Go compile actions."""

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG, stream=sys.stderr, format="orchestrion: %(message)s"
        )
    try:
        settings = load_settings(config_path)
    except (OSError, ValueError) as exc:
        raise click.UsageError(str(exc)) from exc
    ctx.obj = CLIState(settings=settings.merged(start_timeout=start_timeout), verbose=verbose)


@app.command(context_settings={"ignore_unknown_options": True})
@click.option("--orchestrion", "orchestrion_path", default="", help="orchestrion binary.")
@click.option("--go-sdk", "go_sdk_path", default="", help="Root of the Go SDK.")
@click.option("--importpath", "import_path", default="", help="Import path being compiled.")
@click.option(
    "--go-mod/--no-go-mod",
    default=True,
    show_default=True,
    help="Create a temporary go.mod in the working directory when orchestrion is used.",
)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_obj
def run(
    state: CLIState,
    orchestrion_path: str,
    go_sdk_path: str,
    import_path: str,
    go_mod: bool,
    command: tuple[str, ...],
) -> None:
    """Run COMMAND with the jobserver URL and import path in its environment."""

    remove_go_mod = None
    if go_mod and orchestrion_path:
        try:
            remove_go_mod = ensure_go_mod(verbose=state.verbose)
        except JobserverError as exc:
            raise click.ClickException(str(exc)) from exc
    try:
        with start_jobserver(
            orchestrion_path, go_sdk_path, state.verbose, settings=state.settings
        ) as jobserver:
            execute_with_jobserver(
                CommandSpec(argv=list(command)),
                jobserver,
                import_path=import_path,
                go_sdk_path=go_sdk_path,
                verbose=state.verbose,
            )
    except JobserverError as exc:
        raise click.ClickException(str(exc)) from exc
    except subprocess.CalledProcessError as exc:
        sys.exit(exc.returncode)
    except OSError as exc:
        raise click.ClickException(f"failed to run {command[0]}: {exc}") from exc
    finally:
        if remove_go_mod is not None:
            remove_go_mod()


@app.command()
@click.option("--url", default="", help="Jobserver URL to expose to the child.")
@click.option("--go-sdk", "go_sdk_path", default="", help="Root of the Go SDK.")
@click.option("--importpath", "import_path", default="", help="Import path being compiled.")
def env(url: str, go_sdk_path: str, import_path: str) -> None:
    """Print the variables a compile action would receive."""

    composed = compose_command_env(
        [], jobserver_url=url, import_path=import_path, go_sdk_path=go_sdk_path
    )
    for entry in composed or []:
        click.echo(entry)


@app.command()
@click.option("--orchestrion", "orchestrion_path", required=True, help="orchestrion binary.")
@click.option("--go-sdk", "go_sdk_path", default="", help="Root of the Go SDK.")
@click.pass_obj
def jobserver(state: CLIState, orchestrion_path: str, go_sdk_path: str) -> None:
    """Start a jobserver, print its URL, and keep it alive until interrupted."""

    try:
        handle = start_jobserver(
            orchestrion_path, go_sdk_path, state.verbose, settings=state.settings
        )
    except JobserverError as exc:
        raise click.ClickException(str(exc)) from exc
    with handle:
        if not handle.endpoint:
            click.echo("ORCHESTRION_JOBSERVER_URL is already set; nothing to start.", err=True)
            return
        click.echo(handle.endpoint)
        try:
            while handle.process is not None and handle.process.poll() is None:
                time.sleep(0.5)
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":  # pragma: no cover - manual invocation
    app()
