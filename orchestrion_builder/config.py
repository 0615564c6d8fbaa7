"""Settings for the jobserver supervisor, loaded from TOML plus environment overrides."""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_START_TIMEOUT",
    "JobserverSettings",
    "load_settings",
]

DEFAULT_START_TIMEOUT = 10.0
DEFAULT_POLL_INTERVAL = 0.05
_DEFAULT_INACTIVITY_TIMEOUT = "5m"
_ENV_CONFIG = "ORCHESTRION_BUILDER_CONFIG"
_ENV_START_TIMEOUT = "ORCHESTRION_BUILDER_START_TIMEOUT"
_ENV_POLL_INTERVAL = "ORCHESTRION_BUILDER_POLL_INTERVAL"
_ENV_INACTIVITY_TIMEOUT = "ORCHESTRION_BUILDER_INACTIVITY_TIMEOUT"


@dataclass(slots=True)
class JobserverSettings:
    """Timing and placement knobs for the orchestrion jobserver."""

    start_timeout: float = DEFAULT_START_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    inactivity_timeout: str = _DEFAULT_INACTIVITY_TIMEOUT
    url_file_dir: Path | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> JobserverSettings:
        section = data.get("jobserver", {})
        url_file_dir = section.get("url_file_dir")
        return cls(
            start_timeout=float(section.get("start_timeout", DEFAULT_START_TIMEOUT)),
            poll_interval=float(section.get("poll_interval", DEFAULT_POLL_INTERVAL)),
            inactivity_timeout=str(
                section.get("inactivity_timeout", _DEFAULT_INACTIVITY_TIMEOUT)
            ),
            url_file_dir=Path(url_file_dir) if url_file_dir else None,
        )

    @classmethod
    def from_toml(cls, path: Path) -> JobserverSettings:
        data = tomllib.loads(Path(path).read_text("utf-8"))
        return cls.from_mapping(data)

    def merged(
        self,
        *,
        start_timeout: float | None = None,
        poll_interval: float | None = None,
        inactivity_timeout: str | None = None,
        url_file_dir: Path | None = None,
    ) -> JobserverSettings:
        """Return a copy that applies CLI/env overrides."""

        return replace(
            self,
            start_timeout=self.start_timeout if start_timeout is None else start_timeout,
            poll_interval=self.poll_interval if poll_interval is None else poll_interval,
            inactivity_timeout=inactivity_timeout or self.inactivity_timeout,
            url_file_dir=url_file_dir or self.url_file_dir,
        )


def _float_from_env(environ: Mapping[str, str], name: str) -> float | None:
    raw = environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number of seconds (received {raw!r})") from exc


def load_settings(
    path: Path | None = None, environ: Mapping[str, str] | None = None
) -> JobserverSettings:
    """Load settings from ``path`` (or ``$ORCHESTRION_BUILDER_CONFIG``) + env overrides.

    A named config file that does not exist raises :class:`FileNotFoundError`.
    """

    environ = os.environ if environ is None else environ
    if path is None and environ.get(_ENV_CONFIG):
        path = Path(environ[_ENV_CONFIG])
    settings = JobserverSettings()
    if path is not None:
        if not Path(path).is_file():
            raise FileNotFoundError(f"config file not found: {path}")
        settings = JobserverSettings.from_toml(Path(path))

    return settings.merged(
        start_timeout=_float_from_env(environ, _ENV_START_TIMEOUT),
        poll_interval=_float_from_env(environ, _ENV_POLL_INTERVAL),
        inactivity_timeout=environ.get(_ENV_INACTIVITY_TIMEOUT) or None,
    )
