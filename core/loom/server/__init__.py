"""SSE web front-end for the debate pipeline."""

from loom.server.app import DebateServer, DebateServerConfig, create_app

__all__ = ["DebateServer", "DebateServerConfig", "create_app"]
