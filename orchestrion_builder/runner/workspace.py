"""Scaffold the minimal Go module orchestrion expects in the compile directory."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from .errors import FileIOError

__all__ = ["GO_MOD_CONTENT", "ensure_go_mod"]

GO_MOD_CONTENT = "module bazel_orchestrion_temp\n\ngo 1.21\n"

logger = logging.getLogger("orchestrion_builder.runner.workspace")


def ensure_go_mod(directory: Path | str = ".", verbose: bool = False) -> Callable[[], None]:
    """Create ``go.mod`` in ``directory`` unless one exists.

    Returns a callable that removes only what this call created.
    """

    go_mod = Path(directory) / "go.mod"
    created: list[Path] = []
    if not go_mod.exists():
        try:
            go_mod.write_text(GO_MOD_CONTENT, encoding="utf-8")
        except OSError as exc:
            raise FileIOError(f"creating temporary go.mod: {exc}") from exc
        created.append(go_mod)
        if verbose:
            logger.info("workspace.go_mod_created %s", go_mod)

    def _cleanup() -> None:
        while created:
            created.pop().unlink(missing_ok=True)

    return _cleanup
