"""Exceptions raised while supervising the orchestrion jobserver."""

from __future__ import annotations

from pathlib import Path

__all__ = [
    "DiscoveryTimeout",
    "FileIOError",
    "JobserverError",
    "SpawnFailure",
]


class JobserverError(RuntimeError):
    """Base class for jobserver lifecycle failures."""


class SpawnFailure(JobserverError):
    """Raised when the jobserver process cannot be created or dies during startup."""


class DiscoveryTimeout(JobserverError):
    """Raised when the jobserver never publishes its URL within the startup window."""

    def __init__(self, path: Path | str, timeout: float) -> None:
        self.path = Path(path)
        self.timeout = timeout
        super().__init__(
            f"timeout waiting for orchestrion jobserver URL file: {self.path} "
            f"(waited {timeout:g}s)"
        )


class FileIOError(JobserverError):
    """Raised when the URL file cannot be read, written, or removed."""
