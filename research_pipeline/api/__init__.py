"""HTTP API over the pipeline orchestrator."""

from .app import create_app

__all__ = ["create_app"]
