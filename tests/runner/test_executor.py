from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest

from orchestrion_builder.runner import (
    CommandSpec,
    JobserverHandle,
    compose_command_env,
    execute_with_jobserver,
)
from orchestrion_builder.runner.environment import environ_dict

_PRINT_ENV = (
    "import os, sys; "
    "names = sys.argv[1:]; "
    "print('\\n'.join(f'{n}={os.environ.get(n, \"<unset>\")}' for n in names))"
)


def _child_env(result: subprocess.CompletedProcess[bytes]) -> dict[str, str]:
    return environ_dict(result.stdout.decode().splitlines())


def _printing(*names: str, env: list[str] | None = None) -> CommandSpec:
    return CommandSpec(
        argv=[sys.executable, "-c", _PRINT_ENV, *names],
        env=env,
        stdout=subprocess.PIPE,
    )


@pytest.fixture()
def jobserver() -> JobserverHandle:
    return JobserverHandle(url="http://127.0.0.1:9999")


@pytest.fixture()
def go_sdk(tmp_path: Path) -> Path:
    sdk = tmp_path / "go"
    (sdk / "bin").mkdir(parents=True)
    tool = sdk / "bin" / "fake-go-tool"
    tool.write_text(f"#!{sys.executable}\nprint('fake-go-tool ran')\n")
    tool.chmod(0o755)
    return sdk


def test_compose_keeps_inheritance_when_nothing_to_add() -> None:
    assert compose_command_env(None) is None
    assert compose_command_env(None, go_sdk_path="/opt/go") is None


def test_compose_adds_jobserver_variables() -> None:
    env = compose_command_env(
        ["PATH=/usr/bin", "GOTOOLCHAIN=auto", "GOPACKAGESDRIVER=/bin/driver"],
        jobserver_url="http://x",
        import_path="example.com/pkg",
        go_sdk_path="/opt/go",
    )
    assert env == [
        "PATH=/usr/bin",
        "GOTOOLCHAIN=local",
        "GOPACKAGESDRIVER=off",
        "ORCHESTRION_JOBSERVER_URL=http://x",
        "DD_ORCHESTRION_IS_GOMOD_VERSION=true",
        "GOROOT=/opt/go",
        "TOOLEXEC_IMPORTPATH=example.com/pkg",
    ]


def test_compose_preserves_caller_overrides() -> None:
    caller = [
        "ORCHESTRION_JOBSERVER_URL=http://caller",
        "DD_ORCHESTRION_IS_GOMOD_VERSION=false",
        "TOOLEXEC_IMPORTPATH=example.com/caller",
    ]
    env = compose_command_env(caller, jobserver_url="http://x", import_path="example.com/pkg")
    values = environ_dict(env)
    assert values["ORCHESTRION_JOBSERVER_URL"] == "http://caller"
    assert values["DD_ORCHESTRION_IS_GOMOD_VERSION"] == "false"
    assert values["TOOLEXEC_IMPORTPATH"] == "example.com/caller"
    assert "GOROOT" not in values


def test_import_path_without_jobserver_materializes_environment(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("GOTOOLCHAIN", "auto")
    env = compose_command_env(None, import_path="example.com/pkg")
    values = environ_dict(env)
    assert values["TOOLEXEC_IMPORTPATH"] == "example.com/pkg"
    assert values["GOTOOLCHAIN"] == "auto"
    assert "ORCHESTRION_JOBSERVER_URL" not in values


def test_execute_wires_jobserver_into_child(jobserver: JobserverHandle) -> None:
    spec = _printing("ORCHESTRION_JOBSERVER_URL", "TOOLEXEC_IMPORTPATH", "GOTOOLCHAIN")
    result = execute_with_jobserver(spec, jobserver, import_path="example.com/pkg")
    child = _child_env(result)
    assert child["ORCHESTRION_JOBSERVER_URL"] == "http://127.0.0.1:9999"
    assert child["TOOLEXEC_IMPORTPATH"] == "example.com/pkg"
    assert child["GOTOOLCHAIN"] == "local"
    assert spec.env is None


def test_execute_without_jobserver_leaves_env_alone(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOTOOLCHAIN", "auto")
    result = execute_with_jobserver(_printing("ORCHESTRION_JOBSERVER_URL", "GOTOOLCHAIN"), None)
    child = _child_env(result)
    assert child["ORCHESTRION_JOBSERVER_URL"] == "<unset>"
    assert child["GOTOOLCHAIN"] == "auto"


def test_go_sdk_is_visible_during_call_and_restored_after(
    monkeypatch: pytest.MonkeyPatch, go_sdk: Path
) -> None:
    monkeypatch.setenv("PATH", "/usr/bin:/bin")
    monkeypatch.setenv("GOROOT", "/previous/goroot")

    result = execute_with_jobserver(
        _printing("PATH", "GOROOT"), None, go_sdk_path=str(go_sdk)
    )
    child = _child_env(result)
    assert child["PATH"] == f"{go_sdk / 'bin'}{os.pathsep}/usr/bin:/bin"
    assert child["GOROOT"] == str(go_sdk)
    assert os.environ["PATH"] == "/usr/bin:/bin"
    assert os.environ["GOROOT"] == "/previous/goroot"


def test_go_sdk_bin_is_used_for_program_lookup(go_sdk: Path) -> None:
    spec = CommandSpec(argv=["fake-go-tool"], stdout=subprocess.PIPE)
    result = execute_with_jobserver(spec, None, go_sdk_path=str(go_sdk))
    assert result.stdout.decode().strip() == "fake-go-tool ran"


def test_explicit_env_still_gets_goroot(jobserver: JobserverHandle, go_sdk: Path) -> None:
    spec = _printing("GOROOT", env=[f"PATH={os.environ.get('PATH', '')}", "GOROOT=/stale"])
    result = execute_with_jobserver(spec, jobserver, go_sdk_path=str(go_sdk))
    assert _child_env(result)["GOROOT"] == str(go_sdk)


def test_non_zero_exit_propagates_unchanged(jobserver: JobserverHandle) -> None:
    spec = CommandSpec(argv=[sys.executable, "-c", "raise SystemExit(7)"])
    with pytest.raises(subprocess.CalledProcessError) as excinfo:
        execute_with_jobserver(spec, jobserver, verbose=True)
    assert excinfo.value.returncode == 7


def test_missing_program_propagates_os_error(tmp_path: Path) -> None:
    spec = CommandSpec(argv=[str(tmp_path / "not-a-compiler")])
    with pytest.raises(FileNotFoundError):
        execute_with_jobserver(spec, None)


def test_go_sdk_path_without_inherited_path(
    monkeypatch: pytest.MonkeyPatch, go_sdk: Path
) -> None:
    monkeypatch.delenv("PATH", raising=False)
    spec = CommandSpec(
        argv=[sys.executable, "-c", "import os; print(os.environ['PATH'])"],
        stdout=subprocess.PIPE,
    )
    result = execute_with_jobserver(spec, None, go_sdk_path=str(go_sdk))
    assert result.stdout.decode().strip() == str(go_sdk / "bin")
    assert "PATH" not in os.environ
