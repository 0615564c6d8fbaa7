"""Jobserver supervision helpers for orchestrion-instrumented Go builds."""

from .version import __version__  # noqa: F401
