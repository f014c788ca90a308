"""Debug server and observability tools."""

from chat_triage.debug.server import create_app

__all__ = ["create_app"]
