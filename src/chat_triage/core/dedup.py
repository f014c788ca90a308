"""Short-lived de-duplication of notifications and cheers.

Twitch can report the same sub, raid or cheer twice: once over IRC (a
USERNOTICE, or a PRIVMSG with a ``bits`` tag) and once through EventSub.
Neither carries a shared id, so events are keyed on (kind, user, detail) and
remembered for a short window.
"""

import logging

from chat_triage.events import Bits, ChatEvent, ChatMessage, Raid, Subscription

logger = logging.getLogger(__name__)


def dedup_key(event: ChatEvent) -> tuple[str, str, str] | None:
    """Key for events that may arrive over two transports, else None."""
    if isinstance(event, Subscription):
        detail = "gift" if event.is_gift else f"months:{event.months}"
        return ("subscription", event.username.lower(), detail)
    if isinstance(event, Raid):
        return ("raid", event.username.lower(), "")
    # An IRC cheer and its EventSub channel.cheer share one key
    if isinstance(event, (Bits, ChatMessage)) and event.bits > 0:
        return ("bits", event.username.lower(), str(event.bits))
    return None


class NotificationDeduplicator:
    """Remembers recently seen notification keys for ``window`` seconds."""

    def __init__(self, window: float = 30.0):
        self._window = window
        self._seen: dict[tuple[str, str, str], float] = {}

    def _expire(self, now: float) -> None:
        expired = [key for key, seen_at in self._seen.items() if now - seen_at > self._window]
        for key in expired:
            del self._seen[key]

    def is_duplicate(self, event: ChatEvent, now: float) -> bool:
        """Check and record an event. Only the first sighting returns False."""
        key = dedup_key(event)
        if key is None or self._window <= 0:
            return False
        self._expire(now)
        if key in self._seen:
            logger.debug(f"DUPLICATE: {key} already seen")
            return True
        self._seen[key] = now
        return False

    def __len__(self) -> int:
        return len(self._seen)
