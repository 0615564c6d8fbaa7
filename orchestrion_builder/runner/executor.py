"""Run compiler commands so they can reach the orchestrion jobserver."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, replace
from pathlib import Path
from typing import IO, Any

from .environment import (
    append_env_if_missing,
    environ_dict,
    environ_list,
    go_sdk_bin,
    prepend_to_path,
    scoped_environ,
    set_env,
)
from .supervisor import JOBSERVER_URL_ENV, JobserverHandle, endpoint_of

__all__ = [
    "IMPORT_PATH_ENV",
    "SKIP_PIN_ENV",
    "CommandSpec",
    "compose_command_env",
    "execute_with_jobserver",
    "run_and_log_command",
]

IMPORT_PATH_ENV = "TOOLEXEC_IMPORTPATH"
# Orchestrion otherwise tries to pin itself in go.mod.
SKIP_PIN_ENV = "DD_ORCHESTRION_IS_GOMOD_VERSION"

logger = logging.getLogger("orchestrion_builder.runner.executor")

_Stream = int | IO[Any] | None


@dataclass(slots=True)
class CommandSpec:
    """A compiler invocation prepared by the caller.

    ``env=None`` means the child inherits the parent environment at spawn time.
    """

    argv: Sequence[str]
    env: list[str] | None = None
    cwd: Path | None = None
    stdout: _Stream = None
    stderr: _Stream = None


def compose_command_env(
    env: Sequence[str] | None,
    *,
    jobserver_url: str = "",
    import_path: str = "",
    go_sdk_path: str = "",
) -> list[str] | None:
    """Add the jobserver and compilation-unit variables to ``env``.

    Variables the caller already set for the URL, the gomod pin switch, and the
    import path are kept. ``GOPACKAGESDRIVER``, ``GOTOOLCHAIN`` and ``GOROOT``
    are forced. Returns ``None`` when ``env`` was ``None`` and nothing needed to
    be added, so the child keeps inheriting.
    """

    result = None if env is None else list(env)
    if jobserver_url:
        if result is None:
            result = environ_list()
        result = append_env_if_missing(result, JOBSERVER_URL_ENV, jobserver_url)
        result = append_env_if_missing(result, SKIP_PIN_ENV, "true")
        result = set_env(result, "GOPACKAGESDRIVER", "off")
        result = set_env(result, "GOTOOLCHAIN", "local")
        if go_sdk_path:
            result = set_env(result, "GOROOT", go_sdk_path)
    if import_path:
        if result is None:
            result = environ_list()
        result = append_env_if_missing(result, IMPORT_PATH_ENV, import_path)
    return result


def execute_with_jobserver(
    spec: CommandSpec,
    jobserver: JobserverHandle | None,
    import_path: str = "",
    go_sdk_path: str = "",
    verbose: bool = False,
) -> subprocess.CompletedProcess[Any]:
    """Run ``spec`` with the jobserver URL and Go SDK wired into its environment.

    With a Go SDK the parent's PATH and GOROOT point at it for the duration of
    the call: program lookup happens against the parent PATH, and tools started
    indirectly read GOROOT from it. Both are restored afterwards. Spawn errors
    and non-zero exits propagate unchanged.
    """

    if not go_sdk_path:
        return _execute(spec, jobserver, import_path, go_sdk_path, verbose)
    path = environ_dict(prepend_to_path(environ_list(), go_sdk_bin(go_sdk_path)))["PATH"]
    with scoped_environ(PATH=path, GOROOT=go_sdk_path):
        return _execute(spec, jobserver, import_path, go_sdk_path, verbose)


def _execute(
    spec: CommandSpec,
    jobserver: JobserverHandle | None,
    import_path: str,
    go_sdk_path: str,
    verbose: bool,
) -> subprocess.CompletedProcess[Any]:
    env = compose_command_env(
        spec.env,
        jobserver_url=endpoint_of(jobserver),
        import_path=import_path,
        go_sdk_path=go_sdk_path,
    )
    return run_and_log_command(replace(spec, env=env), verbose)


def run_and_log_command(spec: CommandSpec, verbose: bool = False) -> subprocess.CompletedProcess[Any]:
    argv = list(spec.argv)
    if verbose:
        logger.info(
            "command.run %s",
            shlex.join(argv),
            extra={"argv": argv, "cwd": str(spec.cwd) if spec.cwd else None},
        )
    return subprocess.run(  # noqa: S603
        argv,
        env=environ_dict(spec.env) if spec.env is not None else None,
        cwd=str(spec.cwd) if spec.cwd is not None else None,
        stdout=spec.stdout,
        stderr=spec.stderr,
        check=True,
    )
