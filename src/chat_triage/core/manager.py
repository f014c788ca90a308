"""Central funnel: filter, score, queue and select chat events for reply."""

import asyncio
import logging
import random
import time
from collections.abc import Callable
from typing import Any

from chat_triage.config import TriageConfig
from chat_triage.core.channels import EventBus
from chat_triage.core.dedup import NotificationDeduplicator
from chat_triage.core.logging import get_session_stats, log_timing
from chat_triage.core.queue import MessageQueue, PrioritizedMessage
from chat_triage.core.rate_limit import RateLimiter
from chat_triage.core.scoring import PriorityScorer, ScoreResult
from chat_triage.events import (
    Bits,
    ChatEvent,
    EventKind,
    Follow,
    Raid,
    Redemption,
    Subscription,
    has_support_signal,
)

logger = logging.getLogger(__name__)

# Known bot accounts whose chatter is never worth a reply
BOT_USERNAMES = frozenset({
    "nightbot", "streamelements", "streamlabs", "moobot",
    "fossabot", "wizebot", "soundalerts", "commanderroot",
})

# Extra score above the auto-respond threshold that triggers an immediate tick
IMMEDIATE_TICK_MARGIN = 50

# How often to log session stats (every N events)
STATS_LOG_INTERVAL = 50


class ChatManager:
    """Single funnel for every adapter's events.

    Two entry points touch the queue and the rate limiter: ``ingest`` (one
    event at a time) and ``tick`` (periodic selection). Both are plain
    synchronous methods, so under asyncio each runs as one atomic unit.

    Outputs:
        selected: PrioritizedMessages chosen for an AI reply
        notifications: Subscription, Raid, textless Bits, Follow and
            Redemption events to acknowledge outside the rate limiter
    """

    def __init__(
        self,
        config: TriageConfig,
        bot_names: list[str] | tuple[str, ...] = (),
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self._config = config
        self._bot_names = tuple(bot_names)
        self._clock = clock
        self._rng = rng or random.Random()

        self._scorer = PriorityScorer(config, self._bot_names)
        self._queue = MessageQueue(
            max_size=config.queue_max_size,
            max_age=config.queue_max_age_seconds,
            stale_after=config.stale_after_seconds,
        )
        self._limiter = RateLimiter(
            max_per_window=config.max_responses_per_minute,
            min_gap=config.min_seconds_between_responses,
        )
        self._dedup = NotificationDeduplicator(window=config.dedup_window_seconds)

        self.selected: asyncio.Queue[PrioritizedMessage] = asyncio.Queue()
        self.notifications: asyncio.Queue[ChatEvent] = asyncio.Queue()

        self._tasks: list[asyncio.Task] = []

        logger.info(
            f"ChatManager initialized: cost_control={config.subscribers_and_donations_only} "
            f"max_per_minute={config.max_responses_per_minute} "
            f"threshold={config.auto_respond_threshold}"
        )

    @property
    def config(self) -> TriageConfig:
        return self._config

    def update_config(self, **changes: Any) -> None:
        """Apply runtime config changes. Keys whose value is None are ignored."""
        for key, value in changes.items():
            if value is None:
                continue
            if not hasattr(self._config, key):
                raise ValueError(f"Unknown triage setting: {key}")
            setattr(self._config, key, value)
        self._scorer = PriorityScorer(self._config, self._bot_names)
        self._limiter.max_per_window = self._config.max_responses_per_minute
        self._limiter.min_gap = self._config.min_seconds_between_responses
        logger.info(f"CONFIG_UPDATE: {', '.join(k for k, v in changes.items() if v is not None)}")

    def ingest(self, event: ChatEvent) -> PrioritizedMessage | None:
        """Handle one normalized event.

        Returns:
            The queued entry, or None if the event was filtered, forwarded
            as a notification only, or a duplicate.
        """
        stats = get_session_stats()
        stats.increment("events_received")
        if stats.events_received % STATS_LOG_INTERVAL == 0:
            logger.info(f"SESSION_STATS: {stats.summary_line()}")

        now = self._clock()

        if self._dedup.is_duplicate(event, now):
            stats.increment("duplicates_dropped")
            logger.info(f"DUPLICATE: {event.kind.value} from {event.username} already handled")
            return None

        if isinstance(event, (Subscription, Raid, Follow, Redemption)):
            self.notifications.put_nowait(event)
            logger.info(f"NOTIFY: {event.kind.value} from {event.username}")
            if not isinstance(event, Subscription):
                return None

        if isinstance(event, Bits) and not event.message.strip():
            self.notifications.put_nowait(event)
            logger.info(f"NOTIFY: {event.bits} bits from {event.username}")
            return None

        if not event.text.strip():
            return None

        reason = self._filter_reason(event)
        if reason:
            stats.increment("events_filtered")
            logger.debug(f"FILTERED: {event.platform.value}/{event.username} ({reason})")
            return None

        return self._enqueue(event, now)

    def _filter_reason(self, event: ChatEvent) -> str | None:
        """Why an event must not reach the queue, or None if it may."""
        cfg = self._config
        if cfg.ignore_bots and event.username.lower() in BOT_USERNAMES:
            return "bot account"

        length = len(event.text)
        if length < cfg.min_message_length or length > cfg.max_message_length:
            return f"length {length}"

        # Cost control happens before scoring: every queued message may cost a paid call
        if cfg.subscribers_and_donations_only and not has_support_signal(event):
            return "cost control"

        return None

    def _enqueue(self, event: ChatEvent, now: float) -> PrioritizedMessage:
        result: ScoreResult = self._scorer.score(event)
        entry = PrioritizedMessage(
            event=event,
            tier=result.tier,
            score=result.score,
            enqueued_at=now,
        )
        dropped = self._queue.add(entry, now)

        get_session_stats().increment("messages_queued")
        preview = event.text[:60] + "..." if len(event.text) > 60 else event.text
        logger.info(
            f"QUEUED: [{event.platform.value}] <{event.username}> '{preview}' "
            f"tier={result.tier.name} score={result.score:g} queue={len(self._queue)}"
        )
        if any(d is entry for d in dropped):
            logger.info(f"QUEUE_EVICT: new entry from {event.username} scored too low to keep")

        if result.score >= self._config.auto_respond_threshold + IMMEDIATE_TICK_MARGIN:
            logger.debug(f"IMMEDIATE_TICK: score {result.score:g} from {event.username}")
            self.tick()

        return entry

    def tick(self) -> PrioritizedMessage | None:
        """Pick at most one message to reply to, subject to the rate limiter."""
        with log_timing(logger, "Selection tick", warn_ms=50):
            now = self._clock()
            cfg = self._config

            stale = self._queue.mark_stale(now)
            if stale:
                logger.debug(f"QUEUE_STALE: marked {stale} entries processed")
            self._queue.purge_expired(now)

            pending = self._queue.pending()
            if not pending:
                return None

            if not self._limiter.allows(now):
                logger.debug(
                    f"RATE_LIMITED: {self._limiter.count_in_window(now)} in window, "
                    f"{len(pending)} pending"
                )
                return None

            selected: PrioritizedMessage | None = None
            high_priority = [e for e in pending if e.score >= cfg.auto_respond_threshold]
            if high_priority:
                selected = high_priority[0]
            elif not cfg.subscribers_and_donations_only:
                # Random sampling keeps regular viewers in the mix; off under cost control
                pool = pending[: cfg.random_sample_size]
                if self._rng.random() < cfg.random_sample_chance:
                    selected = self._rng.choice(pool)

            if selected is None:
                return None

            selected.processed = True
            self._limiter.record(now)
            self.selected.put_nowait(selected)
            get_session_stats().increment("messages_selected")
            logger.info(
                f"SELECTED: [{selected.event.platform.value}] <{selected.event.username}> "
                f"tier={selected.tier.name} score={selected.score:g}"
            )
            return selected

    def start(self, bus: EventBus) -> None:
        """Start consuming the bus and ticking on a fixed interval."""
        if self._tasks:
            return
        for kind in EventKind:
            self._tasks.append(asyncio.create_task(self._consume(bus.channel(kind))))
        self._tasks.append(asyncio.create_task(self._tick_loop()))
        logger.info("ChatManager started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("ChatManager stopped")

    async def _consume(self, channel: asyncio.Queue[ChatEvent]) -> None:
        while True:
            event = await channel.get()
            try:
                self.ingest(event)
            except Exception:
                logger.exception(f"Error ingesting {event.kind.value} event {event.id}")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.tick_interval_seconds)
            try:
                self.tick()
            except Exception:
                logger.exception("Error in selection tick")

    def pending(self) -> list[PrioritizedMessage]:
        return self._queue.pending()

    def __len__(self) -> int:
        return len(self._queue)

    def get_stats(self) -> dict[str, Any]:
        """Queue stats for the debug server."""
        now = self._clock()
        pending = self._queue.pending()
        breakdown: dict[str, int] = {}
        for entry in pending:
            breakdown[entry.tier.name] = breakdown.get(entry.tier.name, 0) + 1
        return {
            "queue_size": len(self._queue),
            "pending_count": len(pending),
            "responses_last_minute": self._limiter.count_in_window(now),
            "priority_breakdown": breakdown,
        }
