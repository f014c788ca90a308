"""Reply generation and delivery."""

from chat_triage.dispatch.dispatcher import Dispatcher
from chat_triage.dispatch.generator import (
    AnthropicReplyGenerator,
    GameStateProvider,
    NullGameState,
    ReplyContext,
    ReplyGenerator,
    clean_reply,
)

__all__ = [
    "AnthropicReplyGenerator",
    "Dispatcher",
    "GameStateProvider",
    "NullGameState",
    "ReplyContext",
    "ReplyGenerator",
    "clean_reply",
]
