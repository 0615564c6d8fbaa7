"""Shared pytest fixtures."""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path

import pytest

from orchestrion_builder.config import JobserverSettings

FAKE_URL = "http://127.0.0.1:9999"

_FAKE_ORCHESTRION = textwrap.dedent(
    """\
    import os
    import sys
    import time

    args = sys.argv[1:]
    assert args[0] == "server", args
    options = dict(arg.lstrip("-").split("=", 1) for arg in args[1:])
    state_dir = os.environ.get("FAKE_ORCHESTRION_STATE")
    if state_dir:
        with open(os.path.join(state_dir, "pid"), "w") as fh:
            fh.write(str(os.getpid()))
        with open(os.path.join(state_dir, "env"), "w") as fh:
            fh.write("\\n".join(f"{k}={v}" for k, v in os.environ.items()))
        with open(os.path.join(state_dir, "argv"), "w") as fh:
            fh.write("\\n".join(args))
    mode = os.environ.get("FAKE_ORCHESTRION_MODE", "serve")
    if mode == "exit":
        sys.exit(3)
    if mode == "garbled":
        with open(options["url-file"], "wb") as fh:
            fh.write(b"\\xff\\xfehttp://x")
    if mode == "serve":
        time.sleep(0.05)
        tmp = options["url-file"] + ".tmp"
        with open(tmp, "w") as fh:
            fh.write(os.environ.get("FAKE_ORCHESTRION_URL", "__URL__") + "\\n")
        os.replace(tmp, options["url-file"])
    time.sleep(float(os.environ.get("FAKE_ORCHESTRION_LIFETIME", "60")))
    """
).replace("__URL__", FAKE_URL)


@pytest.fixture(autouse=True)
def _no_inherited_jobserver(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("ORCHESTRION_JOBSERVER_URL", raising=False)


@pytest.fixture()
def fake_orchestrion(tmp_path: Path) -> Path:
    """An executable that behaves like ``orchestrion server`` for tests."""

    script = tmp_path / "bin" / "orchestrion"
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text(f"#!{sys.executable}\n{_FAKE_ORCHESTRION}")
    script.chmod(0o755)
    return script


@pytest.fixture()
def fake_state(tmp_path: Path) -> Path:
    state = tmp_path / "state"
    state.mkdir()
    return state


@pytest.fixture()
def settings(tmp_path: Path) -> JobserverSettings:
    url_dir = tmp_path / "urls"
    url_dir.mkdir()
    return JobserverSettings(start_timeout=10.0, poll_interval=0.02, url_file_dir=url_dir)
