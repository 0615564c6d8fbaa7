"""Poll the jobserver URL file until the server publishes its endpoint."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from orchestrion_builder.config import DEFAULT_POLL_INTERVAL, DEFAULT_START_TIMEOUT

from .errors import DiscoveryTimeout, FileIOError

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_START_TIMEOUT",
    "PollTimeout",
    "await_endpoint",
    "poll_until",
    "read_endpoint_file",
]

T = TypeVar("T")


class PollTimeout(TimeoutError):
    """Raised by :func:`poll_until` when the deadline passes without a result."""


def poll_until(
    probe: Callable[[], T | None],
    *,
    timeout: float,
    interval: float,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``probe`` until it returns something other than ``None``.

    The first attempt happens immediately. Every miss is followed by
    ``sleep(interval)`` and the loop gives up once ``clock()`` reaches the
    deadline. At least one attempt is made even when ``timeout`` is zero.
    """

    deadline = clock() + timeout
    while True:
        value = probe()
        if value is not None:
            return value
        if clock() >= deadline:
            raise PollTimeout(f"condition not met within {timeout:g}s")
        sleep(interval)


def read_endpoint_file(path: Path | str) -> str | None:
    """Return the trimmed URL stored in ``path`` or ``None`` if not written yet."""

    try:
        data = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        raise FileIOError(f"reading jobserver URL file {path}: {exc}") from exc
    url = data.strip()
    return url or None


def await_endpoint(
    path: Path | str,
    timeout: float = DEFAULT_START_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
    *,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    alive: Callable[[], bool] | None = None,
) -> str:
    """Wait for the jobserver to write its URL into ``path``.

    ``alive`` lets the caller stop early when the writer has already exited;
    when it returns ``False`` the file is read one last time and
    :class:`DiscoveryTimeout` is raised if it is still empty.
    """

    def _probe() -> str | None:
        url = read_endpoint_file(path)
        if url is None and alive is not None and not alive():
            url = read_endpoint_file(path)
            if url is None:
                raise DiscoveryTimeout(path, timeout)
        return url

    try:
        return poll_until(_probe, timeout=timeout, interval=interval, clock=clock, sleep=sleep)
    except PollTimeout as exc:
        raise DiscoveryTimeout(path, timeout) from exc
