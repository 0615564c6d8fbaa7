"""Command line entry point for orchestrion-builder."""

from .main import app

__all__ = ["app"]
