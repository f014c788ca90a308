"""FastAPI debug server exposing connection health, queue contents and counters."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from fastapi import FastAPI

from chat_triage.core.logging import get_session_stats

if TYPE_CHECKING:
    from chat_triage.core.manager import ChatManager

# Returns {"twitch": {"irc": "CONNECTED", ...}, "x": {...}}
StatesFn = Callable[[], dict[str, dict[str, str]]]

logger = logging.getLogger(__name__)


def create_app(manager: ChatManager, states_fn: StatesFn | None = None) -> FastAPI:
    """Create the debug server FastAPI app.

    Args:
        manager: The running chat manager.
        states_fn: Optional callable reporting per-adapter socket states.

    Returns:
        A configured FastAPI application.
    """
    app = FastAPI(title="Chat Triage Debug")

    @app.get("/health")
    async def health():
        """Adapter connection states."""
        states = states_fn() if states_fn else {}
        connected = any(
            status.startswith("CONNECTED")
            for sockets in states.values()
            for status in sockets.values()
        )
        return {"status": "ok" if connected else "degraded", "platforms": states}

    @app.get("/stats")
    async def stats():
        """Queue statistics plus session counters."""
        return {"queue": manager.get_stats(), "session": get_session_stats().summary()}

    @app.get("/queue")
    async def queue(limit: int = 20):
        """Pending entries, highest score first."""
        return {"pending": [entry.to_dict() for entry in manager.pending()[:limit]]}

    return app
