"""Bounded, age-limited priority queue of scored chat events."""

import itertools
import logging
from dataclasses import dataclass, field

from chat_triage.core.scoring import Tier
from chat_triage.events import ChatEvent

logger = logging.getLogger(__name__)

_sequence = itertools.count()


@dataclass
class PrioritizedMessage:
    """A chat event plus its computed tier, score and processing status."""

    event: ChatEvent
    tier: Tier
    score: float
    enqueued_at: float
    processed: bool = False
    seq: int = field(default_factory=lambda: next(_sequence))

    @property
    def sort_key(self) -> tuple[float, int]:
        """Highest score first, earlier insertion first on ties."""
        return (-self.score, self.seq)

    def to_dict(self) -> dict:
        return {
            "id": self.event.id,
            "platform": self.event.platform.value,
            "username": self.event.username,
            "text": self.event.text,
            "tier": self.tier.name,
            "score": self.score,
            "processed": self.processed,
        }


class MessageQueue:
    """Holds PrioritizedMessages under size and age bounds.

    - Length never exceeds ``max_size`` after a mutation; on overflow the
      top ``max_size`` entries by score survive.
    - Entries older than ``max_age`` are purged regardless of score.
    - Unselected entries older than ``stale_after`` are marked processed.

    Not locked: every method runs to completion without awaiting.
    """

    def __init__(self, max_size: int = 100, max_age: float = 300.0, stale_after: float = 120.0):
        self._max_size = max_size
        self._max_age = max_age
        self._stale_after = stale_after
        self._entries: list[PrioritizedMessage] = []

    def add(self, entry: PrioritizedMessage, now: float) -> list[PrioritizedMessage]:
        """Append an entry, then purge and evict.

        Returns:
            Entries dropped by eviction or purge (may include ``entry`` itself)
        """
        self._entries.append(entry)
        dropped = self.purge_expired(now)
        if len(self._entries) > self._max_size:
            self._entries.sort(key=lambda e: e.sort_key)
            evicted = self._entries[self._max_size:]
            del self._entries[self._max_size:]
            logger.debug(f"QUEUE_EVICT: dropped {len(evicted)} lowest-scoring entries")
            dropped.extend(evicted)
        return dropped

    def purge_expired(self, now: float) -> list[PrioritizedMessage]:
        """Remove entries older than the maximum age."""
        kept = []
        expired = []
        for entry in self._entries:
            if now - entry.enqueued_at >= self._max_age:
                expired.append(entry)
            else:
                kept.append(entry)
        if expired:
            self._entries = kept
            logger.debug(f"QUEUE_PURGE: removed {len(expired)} expired entries")
        return expired

    def mark_stale(self, now: float) -> int:
        """Mark unprocessed entries older than ``stale_after`` as processed."""
        count = 0
        for entry in self._entries:
            if not entry.processed and now - entry.enqueued_at > self._stale_after:
                entry.processed = True
                count += 1
        return count

    def pending(self) -> list[PrioritizedMessage]:
        """Unprocessed entries, best first."""
        return sorted((e for e in self._entries if not e.processed), key=lambda e: e.sort_key)

    def entries(self) -> list[PrioritizedMessage]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
