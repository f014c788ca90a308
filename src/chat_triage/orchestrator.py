"""Main orchestrator tying adapters, the chat manager and dispatch together."""

import asyncio
import logging

import uvicorn

from chat_triage.config import Config, get_bot_names
from chat_triage.core import ChatManager, EventBus
from chat_triage.core.logging import get_session_stats
from chat_triage.debug.server import create_app
from chat_triage.dispatch import AnthropicReplyGenerator, Dispatcher, GameStateProvider, ReplyGenerator
from chat_triage.errors import AuthError
from chat_triage.events import Platform
from chat_triage.platforms import ReconnectPolicy, TwitchAdapter, XAdapter
from chat_triage.viewers import MemoryViewerStore, SqliteViewerStore, ViewerStore

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns every long-lived component and their startup/shutdown order."""

    def __init__(
        self,
        config: Config,
        generator: ReplyGenerator | None = None,
        game_state: GameStateProvider | None = None,
        viewers: ViewerStore | None = None,
    ):
        """Initialize the orchestrator with all components.

        Args:
            config: Application configuration
            generator: Reply generator; defaults to the Anthropic one
            game_state: Optional game-state snapshot provider
            viewers: Viewer store; defaults to SQLite at the configured path
        """
        self._config = config
        self.bus = EventBus()
        self.manager = ChatManager(config.triage, get_bot_names(config))

        policy = ReconnectPolicy.from_config(config.reconnect)
        self.twitch: TwitchAdapter | None = (
            TwitchAdapter(config.twitch, self.bus, policy) if config.twitch.enabled else None
        )
        self.x: XAdapter | None = XAdapter(config.x, self.bus) if config.x.enabled else None

        responder = config.responder
        if generator is None:
            api_key = responder.anthropic_api_key.get_secret_value() if responder.anthropic_api_key else None
            generator = AnthropicReplyGenerator(
                api_key=api_key,
                model=responder.model,
                streamer_name=responder.streamer_name,
                max_response_length=responder.max_response_length,
            )
        if viewers is None:
            viewers = SqliteViewerStore(responder.viewer_db_path) if responder.enabled else MemoryViewerStore()

        self.dispatcher = Dispatcher(
            self.manager,
            generator,
            viewers=viewers,
            game_state=game_state,
            history_size=responder.history_size,
            max_response_length=responder.max_response_length,
            include_game_context=responder.include_game_context,
        )

        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None
        self._watch_task: asyncio.Task | None = None
        self._stopped = asyncio.Event()

        logger.info("Orchestrator initialized")

    def states(self) -> dict[str, dict[str, str]]:
        states = {}
        if self.twitch is not None:
            states[Platform.TWITCH.value] = self.twitch.states()
        if self.x is not None:
            states[Platform.X.value] = self.x.states()
        return states

    async def _connect(self, name: str, adapter: TwitchAdapter | XAdapter) -> bool:
        try:
            await adapter.connect()
        except AuthError as e:
            logger.error(f"AUTH_FAILED: {name}: {e.detail}; continuing without it")
            return False
        except Exception:
            logger.exception(f"CONNECT_FAILED: {name}; continuing without it")
            return False
        return True

    async def start(self) -> None:
        """Connect adapters and start consuming. Returns once running."""
        if self._config.debug.enabled:
            app = create_app(self.manager, self.states)
            server_config = uvicorn.Config(
                app, host=self._config.debug.host, port=self._config.debug.port, log_level="warning"
            )
            self._server = uvicorn.Server(server_config)
            self._server_task = asyncio.create_task(self._server.serve())
            logger.info(f"Debug server started on http://{self._config.debug.host}:{self._config.debug.port}")

        self.manager.start(self.bus)

        if self.twitch is not None and await self._connect("twitch", self.twitch):
            self.dispatcher.attach(Platform.TWITCH, self.twitch)
        else:
            self.twitch = None
        if self.x is not None and await self._connect("x", self.x):
            self.dispatcher.attach(Platform.X, self.x)
        else:
            self.x = None

        if self.twitch is None and self.x is None:
            logger.warning("No platform connected; only the debug server is running")

        self.dispatcher.start()
        self._watch_task = asyncio.create_task(self._watch_disconnects())
        logger.info("Chat triage running")

    async def _watch_disconnects(self) -> None:
        """Degrade to the remaining platforms when a socket gives up."""
        while True:
            signal = await self.bus.disconnects.get()
            self.dispatcher.detach(signal.platform)
            if signal.platform == Platform.TWITCH and self.twitch is not None:
                # Either Twitch socket dying takes the whole adapter down
                await self.twitch.disconnect()
                self.twitch = None
            logger.warning(
                f"DEGRADED: {signal.platform.value}/{signal.socket} lost; "
                f"remaining platforms: {', '.join(self.states()) or 'none'}"
            )

    async def run_forever(self) -> None:
        await self.start()
        await self._stopped.wait()

    async def stop(self) -> None:
        """Stop timers, close sockets and shut the debug server down."""
        logger.info(f"Shutting down. SESSION_STATS: {get_session_stats().summary_line()}")
        if self._watch_task is not None:
            self._watch_task.cancel()
        await self.dispatcher.stop()
        await self.manager.stop()
        for adapter in (self.twitch, self.x):
            if adapter is not None:
                await adapter.disconnect()
        if self._server is not None:
            self._server.should_exit = True
            if self._server_task is not None:
                await self._server_task
        self._stopped.set()
