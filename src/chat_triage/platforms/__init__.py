"""Platform adapters: Twitch (IRC + EventSub) and X (mention polling)."""

from chat_triage.platforms.connection import (
    ConnectionState,
    ConnectionStatus,
    ReconnectingConnection,
    ReconnectPolicy,
)
from chat_triage.platforms.twitch import TwitchAdapter
from chat_triage.platforms.x import XAdapter

__all__ = [
    "ConnectionState",
    "ConnectionStatus",
    "ReconnectPolicy",
    "ReconnectingConnection",
    "TwitchAdapter",
    "XAdapter",
]
