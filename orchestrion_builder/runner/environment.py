"""Compose ``KEY=VALUE`` environment blocks for jobserver and compiler processes."""

from __future__ import annotations

import os
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

__all__ = [
    "AmbientEnvironment",
    "absolute_sdk_path",
    "append_env_if_missing",
    "environ_dict",
    "environ_list",
    "go_sdk_bin",
    "prepend_to_path",
    "scoped_environ",
    "set_env",
]


def environ_list(mapping: Mapping[str, str] | None = None) -> list[str]:
    """Return ``mapping`` (default: ``os.environ``) as an ordered env block."""

    source = os.environ if mapping is None else mapping
    return [f"{key}={value}" for key, value in source.items()]


def environ_dict(env: Sequence[str]) -> dict[str, str]:
    """Collapse an env block into a mapping; the first entry for a key wins."""

    result: dict[str, str] = {}
    for entry in env:
        key, sep, value = entry.partition("=")
        if not sep or key in result:
            continue
        result[key] = value
    return result


def set_env(env: Sequence[str] | None, key: str, value: str) -> list[str]:
    """Set ``key`` to ``value``, replacing an existing entry in place."""

    result = environ_list() if env is None else list(env)
    prefix = f"{key}="
    for index, entry in enumerate(result):
        if entry.startswith(prefix):
            result[index] = prefix + value
            return result
    result.append(prefix + value)
    return result


def prepend_to_path(
    env: Sequence[str] | None, directory: str | os.PathLike[str], key: str = "PATH"
) -> list[str]:
    """Put ``directory`` in front of the path list stored under ``key``."""

    result = environ_list() if env is None else list(env)
    prefix = f"{key}="
    directory = os.fspath(directory)
    for index, entry in enumerate(result):
        if entry.startswith(prefix):
            result[index] = f"{prefix}{directory}{os.pathsep}{entry[len(prefix):]}"
            return result
    result.append(prefix + directory)
    return result


def append_env_if_missing(env: Sequence[str] | None, key: str, value: str) -> list[str]:
    """Append ``key=value`` unless the caller already set ``key``."""

    result = environ_list() if env is None else list(env)
    prefix = f"{key}="
    if any(entry.startswith(prefix) for entry in result):
        return result
    result.append(prefix + value)
    return result


def absolute_sdk_path(sdk: str | os.PathLike[str]) -> Path:
    """Resolve a possibly relative Go SDK path against the working directory."""

    return Path(os.path.abspath(os.fspath(sdk)))


def go_sdk_bin(sdk: str | os.PathLike[str]) -> Path:
    return Path(sdk) / "bin"


@dataclass(frozen=True, slots=True)
class AmbientEnvironment:
    """Immutable snapshot of the environment a child process should inherit."""

    entries: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def capture(cls, mapping: Mapping[str, str] | None = None) -> AmbientEnvironment:
        return cls(entries=tuple(environ_list(mapping)))

    def with_go_sdk(self, sdk: str | os.PathLike[str]) -> AmbientEnvironment:
        """Return a snapshot whose PATH and GOROOT point at ``sdk``."""

        env = prepend_to_path(self.entries, go_sdk_bin(sdk))
        env = set_env(env, "GOROOT", os.fspath(sdk))
        return AmbientEnvironment(entries=tuple(env))

    def get(self, key: str, default: str | None = None) -> str | None:
        return environ_dict(self.entries).get(key, default)

    def as_list(self) -> list[str]:
        return list(self.entries)

    def as_dict(self) -> dict[str, str]:
        return environ_dict(self.entries)


@contextmanager
def scoped_environ(**updates: str) -> Iterator[Mapping[str, str]]:
    """Temporarily apply ``updates`` to ``os.environ``.

    Program lookup for :mod:`subprocess` and any tool that reads the parent
    environment only see these values inside the ``with`` block. Previous
    values are restored on exit, and keys that did not exist are removed again.
    """

    saved: dict[str, str | None] = {key: os.environ.get(key) for key in updates}
    try:
        os.environ.update(updates)
        yield os.environ
    finally:
        for key, previous in saved.items():
            if previous is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = previous
