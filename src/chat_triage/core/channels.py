"""Typed in-process channels between adapters, the chat manager and dispatch."""

import asyncio
import logging

from chat_triage.events import ChatEvent, Disconnected, EventKind

logger = logging.getLogger(__name__)


class EventBus:
    """One asyncio.Queue per event kind, plus a channel for terminal disconnects.

    Adapters publish; the chat manager consumes. The queue an event lands on
    is decided by its class, so consumers never match on name strings.
    """

    def __init__(self) -> None:
        self._queues: dict[EventKind, asyncio.Queue[ChatEvent]] = {
            kind: asyncio.Queue() for kind in EventKind
        }
        self.disconnects: asyncio.Queue[Disconnected] = asyncio.Queue()

    def publish(self, event: ChatEvent) -> None:
        self._queues[event.kind].put_nowait(event)

    def publish_disconnect(self, signal: Disconnected) -> None:
        logger.error(
            f"DISCONNECTED: {signal.platform.value}/{signal.socket} gave up "
            f"after {signal.attempts} attempts"
        )
        self.disconnects.put_nowait(signal)

    def channel(self, kind: EventKind) -> asyncio.Queue[ChatEvent]:
        return self._queues[kind]

    def pending(self) -> dict[str, int]:
        return {kind.value: queue.qsize() for kind, queue in self._queues.items()}
