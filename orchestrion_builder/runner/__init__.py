"""Jobserver supervisor, environment composition, and command execution helpers."""

from .environment import (
    AmbientEnvironment,
    append_env_if_missing,
    prepend_to_path,
    scoped_environ,
    set_env,
)
from .errors import DiscoveryTimeout, FileIOError, JobserverError, SpawnFailure
from .executor import CommandSpec, compose_command_env, execute_with_jobserver
from .supervisor import JobserverHandle, JobserverState, start_jobserver
from .workspace import ensure_go_mod

__all__ = [
    "AmbientEnvironment",
    "CommandSpec",
    "DiscoveryTimeout",
    "FileIOError",
    "JobserverError",
    "JobserverHandle",
    "JobserverState",
    "SpawnFailure",
    "append_env_if_missing",
    "compose_command_env",
    "ensure_go_mod",
    "execute_with_jobserver",
    "prepend_to_path",
    "scoped_environ",
    "set_env",
    "start_jobserver",
]
