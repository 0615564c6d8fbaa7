"""Start, discover, and tear down the orchestrion jobserver used during compilation."""

from __future__ import annotations

import enum
import logging
import os
import subprocess
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from orchestrion_builder.config import JobserverSettings

from .discovery import await_endpoint
from .environment import (
    absolute_sdk_path,
    environ_dict,
    environ_list,
    go_sdk_bin,
    prepend_to_path,
    set_env,
)
from .errors import DiscoveryTimeout, SpawnFailure

__all__ = [
    "JOBSERVER_URL_ENV",
    "JobserverHandle",
    "JobserverState",
    "cleanup",
    "endpoint_of",
    "jobserver_argv",
    "jobserver_env",
    "start_jobserver",
    "url_file_path",
]

JOBSERVER_URL_ENV = "ORCHESTRION_JOBSERVER_URL"

_STDERR_FILENO = 2

logger = logging.getLogger("orchestrion_builder.runner.supervisor")


class JobserverState(enum.Enum):
    ABSENT = "absent"
    STARTING = "starting"
    RUNNING = "running"
    TERMINATED = "terminated"


@dataclass(slots=True)
class JobserverHandle:
    """A jobserver process owned by this builder, or the absent placeholder."""

    url: str = ""
    url_file: Path | None = None
    process: subprocess.Popen[bytes] | None = None
    verbose: bool = False
    _terminated: bool = field(default=False, repr=False)

    @classmethod
    def absent(cls) -> JobserverHandle:
        return cls()

    @property
    def endpoint(self) -> str:
        return self.url

    @property
    def state(self) -> JobserverState:
        if self._terminated:
            return JobserverState.TERMINATED
        if self.process is None and self.url_file is None and not self.url:
            return JobserverState.ABSENT
        if not self.url:
            return JobserverState.STARTING
        return JobserverState.RUNNING

    def cleanup(self) -> None:
        """Kill the server and remove its URL file. Safe to call repeatedly."""

        if self._terminated or self.state is JobserverState.ABSENT:
            return
        self._terminated = True
        if self.process is not None:
            _terminate(self.process, verbose=self.verbose)
        if self.url_file is not None:
            _remove_url_file(self.url_file, verbose=self.verbose)

    def __enter__(self) -> JobserverHandle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.cleanup()


def endpoint_of(handle: JobserverHandle | None) -> str:
    """Return the handle's URL, treating ``None`` as the absent handle."""

    return handle.endpoint if handle is not None else ""


def cleanup(handle: JobserverHandle | None) -> None:
    if handle is not None:
        handle.cleanup()


def url_file_path(directory: Path | str | None = None, pid: int | None = None) -> Path:
    """Per-process URL file location so concurrent builds on a host do not collide."""

    base = Path(directory) if directory is not None else Path(tempfile.gettempdir())
    return base / f"orchestrion-jobserver-{os.getpid() if pid is None else pid}.url"


def jobserver_argv(
    orchestrion_path: str, url_file: Path, inactivity_timeout: str = "5m"
) -> list[str]:
    return [
        orchestrion_path,
        "server",
        f"-url-file={url_file}",
        f"-inactivity-timeout={inactivity_timeout}",
    ]


def jobserver_env(go_sdk_path: str, environ: Mapping[str, str] | None = None) -> list[str]:
    """Environment for the jobserver: the caller's env pinned to the given Go SDK.

    The server loads its configuration through ``go``, so the SDK must come
    first on PATH, toolchain downloads are disabled, and ``go/packages`` must
    not defer to an external driver.
    """

    env = environ_list(environ)
    if go_sdk_path:
        sdk = absolute_sdk_path(go_sdk_path)
        env = prepend_to_path(env, go_sdk_bin(sdk))
        env = set_env(env, "GOROOT", str(sdk))
        env = set_env(env, "GOTOOLCHAIN", "local")
        env = set_env(env, "GOPACKAGESDRIVER", "off")
    return env


def start_jobserver(
    orchestrion_path: str,
    go_sdk_path: str = "",
    verbose: bool = False,
    *,
    settings: JobserverSettings | None = None,
    environ: Mapping[str, str] | None = None,
    output: int | IO[bytes] | None = None,
) -> JobserverHandle:
    """Start ``orchestrion server`` and wait for it to publish its URL.

    Returns the absent handle when no orchestrion binary is configured or when
    ``ORCHESTRION_JOBSERVER_URL`` already points at a running server. The
    caller owns the returned handle and must call :meth:`JobserverHandle.cleanup`.
    """

    environ = os.environ if environ is None else environ
    if not orchestrion_path:
        return JobserverHandle.absent()
    if environ.get(JOBSERVER_URL_ENV):
        _log(verbose, "jobserver.reuse", url=environ[JOBSERVER_URL_ENV])
        return JobserverHandle.absent()

    settings = settings or JobserverSettings()
    url_file = url_file_path(settings.url_file_dir)
    argv = jobserver_argv(orchestrion_path, url_file, settings.inactivity_timeout)
    env = jobserver_env(go_sdk_path, environ)
    if go_sdk_path:
        _log(
            verbose,
            "jobserver.env",
            path_prefix=str(go_sdk_bin(absolute_sdk_path(go_sdk_path))),
            goroot=str(absolute_sdk_path(go_sdk_path)),
        )

    # A file left behind by a crashed run with the same pid would be read as the URL.
    _remove_url_file(url_file, verbose=verbose)
    stream = _STDERR_FILENO if output is None else output
    try:
        process = subprocess.Popen(  # noqa: S603
            argv,
            env=environ_dict(env),
            stdin=subprocess.DEVNULL,
            stdout=stream,
            stderr=stream,
        )
    except OSError as exc:
        _remove_url_file(url_file, verbose=verbose)
        raise SpawnFailure(f"failed to start orchestrion jobserver: {exc}") from exc
    _log(verbose, "jobserver.spawned", pid=process.pid, url_file=str(url_file))

    handle = JobserverHandle(url_file=url_file, process=process, verbose=verbose)
    try:
        url = await_endpoint(
            url_file,
            settings.start_timeout,
            settings.poll_interval,
            alive=lambda: process.poll() is None,
        )
    except BaseException as exc:
        exit_code = process.poll()
        handle.cleanup()
        if exit_code is not None and isinstance(exc, DiscoveryTimeout):
            raise SpawnFailure(
                f"orchestrion jobserver exited with code {exit_code} before publishing its URL"
            ) from exc
        raise
    handle.url = url
    _log(verbose, "jobserver.running", pid=process.pid, url=url)
    return handle


def _terminate(process: subprocess.Popen[bytes], *, verbose: bool) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
    except OSError as exc:
        _log(verbose, "jobserver.kill_failed", pid=process.pid, error=str(exc))
    try:
        process.wait()
    except ChildProcessError:
        pass


def _remove_url_file(path: Path, *, verbose: bool) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        _log(verbose, "jobserver.url_file_remove_failed", url_file=str(path), error=str(exc))


def _log(verbose: bool, event: str, **fields: object) -> None:
    details = " ".join(f"{key}={value}" for key, value in fields.items())
    logger.log(logging.INFO if verbose else logging.DEBUG, "%s %s", event, details, extra=fields)
