"""Turns selected messages and notifications into replies on the right platform."""

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

from chat_triage.core.logging import get_session_stats
from chat_triage.core.manager import ChatManager
from chat_triage.core.queue import PrioritizedMessage
from chat_triage.dispatch.generator import (
    GameStateProvider,
    NullGameState,
    ReplyContext,
    ReplyGenerator,
    clean_reply,
)
from chat_triage.dispatch.prompts import fallback_acknowledgement
from chat_triage.errors import DownstreamGenerationError
from chat_triage.events import (
    Bits,
    ChatEvent,
    ChatMessage,
    Follow,
    Platform,
    Raid,
    Redemption,
    Subscription,
)
from chat_triage.viewers import ViewerRecord, ViewerStore

logger = logging.getLogger(__name__)


class TwitchSender(Protocol):
    async def send_message(self, text: str) -> bool: ...

    async def reply_to_message(self, message_id: str, text: str) -> bool: ...


class XSender(Protocol):
    async def post_tweet(self, text: str, reply_to_id: str | None = None) -> str | None: ...


class Dispatcher:
    """Consumes the chat manager's outputs and sends replies.

    Selected messages go through ``generate_reply``; subscription, raid and
    textless-bits notifications go through ``generate_acknowledgement`` and
    fall back to a template so supporters are always thanked. Notifications
    are not rate limited.
    """

    def __init__(
        self,
        manager: ChatManager,
        generator: ReplyGenerator,
        twitch: TwitchSender | None = None,
        x: XSender | None = None,
        viewers: ViewerStore | None = None,
        game_state: GameStateProvider | None = None,
        history_size: int = 10,
        max_response_length: int = 280,
        include_game_context: bool = True,
    ):
        self._manager = manager
        self._generator = generator
        self._twitch = twitch
        self._x = x
        self._viewers = viewers
        self._game_state = game_state or NullGameState()
        self._max_response_length = max_response_length
        self._include_game_context = include_game_context
        self.recent_replies: deque[str] = deque(maxlen=history_size)
        self._tasks: list[asyncio.Task] = []

    def attach(self, platform: Platform, sender: TwitchSender | XSender) -> None:
        if platform == Platform.TWITCH:
            self._twitch = sender
        elif platform == Platform.X:
            self._x = sender

    def detach(self, platform: Platform) -> None:
        """Stop sending to a platform whose adapter has given up."""
        if platform == Platform.TWITCH:
            self._twitch = None
        elif platform == Platform.X:
            self._x = None
        logger.warning(f"DISPATCH: {platform.value} detached, replies there will be dropped")

    async def _build_context(self, entry: PrioritizedMessage) -> ReplyContext:
        game_state = None
        if self._include_game_context:
            try:
                game_state = await self._game_state.get_game_state()
            except Exception as e:
                logger.debug(f"Game state unavailable: {e}")

        viewer = self._viewers.get(entry.event.username) if self._viewers else None
        return ReplyContext(
            event=entry.event,
            tier=entry.tier,
            score=entry.score,
            recent_replies=list(self.recent_replies),
            game_state=game_state,
            viewer=viewer,
        )

    async def handle_selected(self, entry: PrioritizedMessage) -> bool:
        """Generate and send a reply to one selected message.

        The entry is already marked processed; a failure here only means no
        reply is sent for it.
        """
        event = entry.event
        stats = get_session_stats()
        context = await self._build_context(entry)

        try:
            raw = await self._generator.generate_reply(context)
        except DownstreamGenerationError as e:
            stats.increment("generation_failures")
            logger.error(f"GENERATION_FAILED: {event.platform.value}/{event.kind.value} {event.id}: {e}")
            return False

        text = clean_reply(raw, self._max_response_length)
        if not text:
            stats.increment("generation_failures")
            logger.warning(f"GENERATION_EMPTY: {event.platform.value}/{event.kind.value} {event.id}")
            return False

        if not await self.send(event, text, reply=True):
            stats.increment("send_failures")
            return False

        self.recent_replies.append(text)
        stats.increment("replies_sent")
        self._remember(event)
        logger.info(
            f"DISPATCH: [{event.platform.value}] to {event.username} "
            f"(tier={entry.tier.name} score={entry.score:g}): {text[:50]}"
        )
        return True

    async def handle_notification(self, event: ChatEvent) -> bool:
        """Acknowledge a subscription, raid or cheer. Follows and redemptions are only logged."""
        if isinstance(event, Follow):
            logger.info(f"FOLLOW: {event.username}")
            return False
        if isinstance(event, Redemption):
            logger.info(f"REDEMPTION: {event.username} redeemed '{event.reward_title}' ({event.reward_cost})")
            return False
        if not isinstance(event, (Subscription, Raid, Bits)):
            logger.debug(f"No acknowledgement for {event.kind.value}")
            return False

        try:
            raw = await self._generator.generate_acknowledgement(event)
            text = clean_reply(raw, self._max_response_length)
        except DownstreamGenerationError as e:
            get_session_stats().increment("generation_failures")
            logger.warning(f"GENERATION_FAILED: {event.platform.value}/{event.kind.value} acknowledgement: {e}")
            text = ""
        if not text:
            text = fallback_acknowledgement(event)

        if not await self.send(event, text, reply=False):
            get_session_stats().increment("send_failures")
            return False

        get_session_stats().increment("acknowledgements_sent")
        self._remember(event)
        logger.info(f"ACKNOWLEDGED: [{event.platform.value}] {event.kind.value} from {event.username}: {text[:50]}")
        return True

    async def send(self, event: ChatEvent, text: str, reply: bool = True) -> bool:
        """Send ``text`` through the adapter matching the event's platform."""
        if event.platform == Platform.TWITCH:
            if self._twitch is None:
                logger.warning(f"SEND_SKIPPED: twitch unavailable for {event.kind.value} {event.id}")
                return False
            if reply and isinstance(event, ChatMessage):
                return await self._twitch.reply_to_message(event.id, text)
            return await self._twitch.send_message(text)

        if event.platform == Platform.X:
            if self._x is None:
                logger.warning(f"SEND_SKIPPED: x unavailable for {event.kind.value} {event.id}")
                return False
            tweet_id = await self._x.post_tweet(text, reply_to_id=event.id if reply else None)
            return tweet_id is not None

        return False

    def _remember(self, event: ChatEvent) -> None:
        if self._viewers is None:
            return
        record = self._viewers.get(event.username) or ViewerRecord(username=event.username)
        record.message_count += 1
        record.last_seen = datetime.now(timezone.utc)
        if isinstance(event, Bits):
            record.total_bits += event.bits
        elif isinstance(event, ChatMessage) and event.bits:
            record.total_bits += event.bits
        elif isinstance(event, Subscription) and not event.is_gift:
            record.months_subscribed = max(record.months_subscribed, event.months)
        self._viewers.put(record)

    def start(self) -> None:
        """Start consuming the manager's selected and notification channels."""
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._consume_selected()),
            asyncio.create_task(self._consume_notifications()),
        ]
        logger.info("Dispatcher started")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Dispatcher stopped")

    async def _consume_selected(self) -> None:
        while True:
            entry = await self._manager.selected.get()
            try:
                await self.handle_selected(entry)
            except Exception:
                logger.exception(f"Error dispatching reply to {entry.event.id}")

    async def _consume_notifications(self) -> None:
        while True:
            event = await self._manager.notifications.get()
            try:
                await self.handle_notification(event)
            except Exception:
                logger.exception(f"Error acknowledging {event.kind.value} {event.id}")
