"""Twitch adapter: IRC chat socket plus EventSub notification socket."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

import aiohttp

from chat_triage.config import TwitchConfig
from chat_triage.core.channels import EventBus
from chat_triage.errors import AuthError, ParseError, TransientNetworkError
from chat_triage.events import Platform
from chat_triage.platforms.connection import (
    NETWORK_ERRORS,
    ConnectionStatus,
    ReconnectingConnection,
    ReconnectPolicy,
    ReconnectRequested,
)
from chat_triage.platforms.eventsub import (
    NOTIFICATION,
    REVOCATION,
    SESSION_KEEPALIVE,
    SESSION_RECONNECT,
    SESSION_WELCOME,
    SUBSCRIPTIONS,
    EventSubSession,
    SubscriptionType,
    parse_envelope,
    parse_notification,
    subscription_body,
)
from chat_triage.platforms.irc import (
    format_privmsg,
    handshake_frames,
    parse_line,
    split_lines,
    to_chat_message,
    to_user_notice_event,
)

logger = logging.getLogger(__name__)

AUTH_FAILURE_NOTICES = ("login authentication failed", "improperly formatted auth")


class TwitchAdapter:
    """Owns both Twitch sockets and publishes normalized events to the bus.

    The IRC socket carries chat (PRIVMSG) and backup sub/raid notices
    (USERNOTICE). The EventSub socket carries subs, cheers, raids, follows
    and redemptions. Each reconnects independently.
    """

    def __init__(
        self,
        config: TwitchConfig,
        bus: EventBus,
        policy: ReconnectPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._bus = bus
        self._session = session
        self._session_owned = session is None
        policy = policy or ReconnectPolicy()

        self._irc_ws: aiohttp.ClientWebSocketResponse | None = None
        self._eventsub_ws: aiohttp.ClientWebSocketResponse | None = None
        self._eventsub_url = config.eventsub_url
        self._migrating = False
        self._broadcaster_id: str | None = None
        self.eventsub = EventSubSession()

        self.irc = ReconnectingConnection(
            "irc", Platform.TWITCH, self._irc_session, policy, bus.publish_disconnect, sleep
        )
        self.events = ReconnectingConnection(
            "eventsub", Platform.TWITCH, self._eventsub_session, policy, bus.publish_disconnect, sleep
        )
        self._tasks: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get the HTTP session, creating one if necessary."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
            self._session_owned = True
        return self._session

    @property
    def channel(self) -> str:
        return self._config.channel.lstrip("#").lower()

    def _token(self) -> str:
        token = self._config.access_token.get_secret_value() if self._config.access_token else ""
        return token[len("oauth:"):] if token.startswith("oauth:") else token

    def _helix_headers(self) -> dict[str, str]:
        return {
            "Client-Id": self._config.client_id,
            "Authorization": f"Bearer {self._token()}",
        }

    async def connect(self) -> None:
        """Validate credentials, resolve the broadcaster id and start both sockets.

        Raises:
            AuthError: If credentials are missing or rejected
        """
        if not self._token() or not self.channel or not self._config.bot_username:
            raise AuthError("twitch", "access token, channel and bot username are required")

        self._broadcaster_id = await self.resolve_user_id(self.channel)
        if self._broadcaster_id is None:
            logger.warning("Could not resolve broadcaster id; EventSub subscriptions will be skipped")

        self._tasks = [
            asyncio.create_task(self.irc.run()),
            asyncio.create_task(self.events.run()),
        ]
        logger.info(f"Twitch adapter started for #{self.channel}")

    async def resolve_user_id(self, login: str) -> str | None:
        """``GET /helix/users?login=<name>`` -> numeric id.

        Raises:
            AuthError: On 401 (bad token or client id)
        """
        url = f"{self._config.helix_url}/users"
        try:
            async with self.session.get(
                url, params={"login": login}, headers=self._helix_headers()
            ) as response:
                if response.status == 401:
                    raise AuthError("twitch", "Helix rejected the access token")
                if response.status != 200:
                    logger.warning(f"Helix user lookup for {login} failed: HTTP {response.status}")
                    return None
                data = await response.json()
        except NETWORK_ERRORS as e:
            logger.error(f"Helix user lookup for {login} failed: {e}")
            return None

        users = data.get("data") or []
        return users[0].get("id") if users else None

    async def _irc_session(self) -> None:
        async with self.session.ws_connect(self._config.irc_url) as ws:
            self._irc_ws = ws
            for frame in handshake_frames(self._token(), self._config.bot_username, self.channel):
                await ws.send_str(frame)
            keepalive = asyncio.create_task(self._irc_keepalive(ws))
            try:
                async for msg in ws:
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        await self.handle_irc_payload(msg.data)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        raise TransientNetworkError(f"IRC socket error: {ws.exception()}")
            finally:
                keepalive.cancel()
                self._irc_ws = None

    async def _irc_keepalive(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Client-initiated PING on a fixed interval."""
        while not ws.closed:
            await asyncio.sleep(self._config.keepalive_seconds)
            if not ws.closed:
                await ws.send_str("PING :tmi.twitch.tv")

    async def handle_irc_payload(self, payload: str) -> None:
        for line in split_lines(payload):
            await self.handle_irc_line(line)

    async def handle_irc_line(self, line: str) -> None:
        """Handle one inbound IRC line. Unparseable lines are dropped."""
        try:
            parsed = parse_line(line)
        except ParseError as e:
            logger.debug(f"IRC drop: {e}")
            return

        command = parsed.command
        if command == "PING":
            await self._send_irc(f"PONG :{parsed.text or 'tmi.twitch.tv'}")
        elif command == "001":
            self.irc.mark_connected()
            logger.info(f"IRC authenticated as {self._config.bot_username}")
        elif command == "366":
            logger.info(f"Joined #{self.channel}")
        elif command == "NOTICE" and parsed.text and parsed.text.lower().startswith(AUTH_FAILURE_NOTICES):
            raise AuthError("twitch", parsed.text)
        elif command == "RECONNECT":
            raise ReconnectRequested("server RECONNECT")
        elif command == "PRIVMSG":
            try:
                event = to_chat_message(parsed)
            except ParseError as e:
                logger.debug(f"IRC drop: {e}")
                return
            self._bus.publish(event)
        elif command == "USERNOTICE":
            notice = to_user_notice_event(parsed)
            if notice is not None:
                self._bus.publish(notice)

    async def _send_irc(self, frame: str) -> bool:
        ws = self._irc_ws
        if ws is None or ws.closed:
            logger.warning("Cannot send - IRC not connected")
            return False
        try:
            await ws.send_str(frame)
        except NETWORK_ERRORS as e:
            logger.error(f"SEND_FAILED: twitch/irc: {e}")
            return False
        return True

    async def send_message(self, text: str) -> bool:
        """Send a chat message to the channel."""
        sent = await self._send_irc(format_privmsg(self.channel, text))
        if sent:
            logger.info(f"MSG_SENT: [twitch] #{self.channel}: {text[:80]}")
        return sent

    async def reply_to_message(self, message_id: str, text: str) -> bool:
        """Send a threaded reply to a chat message."""
        sent = await self._send_irc(format_privmsg(self.channel, text, reply_parent_id=message_id))
        if sent:
            logger.info(f"MSG_SENT: [twitch] reply to {message_id}: {text[:80]}")
        return sent

    async def _eventsub_session(self) -> None:
        url = self._eventsub_url
        try:
            async with self.session.ws_connect(url) as ws:
                self._eventsub_ws = ws
                try:
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            await self.handle_eventsub_frame(msg.data)
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            raise TransientNetworkError(f"EventSub socket error: {ws.exception()}")
                finally:
                    self._eventsub_ws = None
        finally:
            if self._migrating and self._eventsub_url == url:
                # Reconnect URLs are single-use and a fresh session starts with no subscriptions
                logger.warning("EventSub migration failed before welcome, falling back to a fresh session")
                self._migrating = False
                self._eventsub_url = self._config.eventsub_url

    async def handle_eventsub_frame(self, raw: str) -> None:
        """Handle one EventSub envelope. Malformed frames are dropped."""
        try:
            message = parse_envelope(raw)
        except ParseError as e:
            logger.debug(f"EventSub drop: {e}")
            return

        message_type = message.message_type
        if message_type == SESSION_WELCOME:
            self.eventsub.session_id = message.session.get("id")
            self.events.mark_connected()
            logger.info(f"EventSub session started: {self.eventsub.session_id}")
            if self._migrating:
                # Subscriptions carry over to the migrated session
                self._migrating = False
                self._eventsub_url = self._config.eventsub_url
            else:
                self._spawn(self.subscribe_all())

        elif message_type == SESSION_KEEPALIVE:
            pass

        elif message_type == NOTIFICATION:
            try:
                event = parse_notification(message)
            except ParseError as e:
                logger.warning(f"EventSub notification dropped: {e}")
                return
            if event is not None:
                self._bus.publish(event)

        elif message_type == SESSION_RECONNECT:
            reconnect_url = message.session.get("reconnect_url")
            if not reconnect_url:
                logger.warning("session_reconnect without reconnect_url, ignoring")
                return
            self._eventsub_url = reconnect_url
            self._migrating = True
            raise ReconnectRequested("session_reconnect")

        elif message_type == REVOCATION:
            subscription = message.payload.get("subscription") or {}
            sub_type = subscription.get("type", "?")
            self.eventsub.acknowledged[sub_type] = False
            logger.warning(f"EventSub subscription revoked: {sub_type} ({subscription.get('status')})")

        else:
            logger.debug(f"EventSub: unknown message type {message_type}")

    async def subscribe_all(self) -> dict[str, bool]:
        """Register every subscription type against the current session.

        Each POST succeeds or fails on its own.
        """
        session_id = self.eventsub.session_id
        if not session_id or not self._broadcaster_id:
            logger.warning("Skipping EventSub subscriptions: no session or broadcaster id")
            return {}

        results = await asyncio.gather(
            *(self._subscribe_one(sub_type, session_id) for sub_type in SUBSCRIPTIONS)
        )
        acknowledged = {sub_type.type: ok for sub_type, ok in zip(SUBSCRIPTIONS, results)}
        logger.info(f"EventSub subscriptions: {sum(results)}/{len(results)} acknowledged")
        return acknowledged

    async def _subscribe_one(self, sub_type: SubscriptionType, session_id: str) -> bool:
        url = f"{self._config.helix_url}/eventsub/subscriptions"
        body = subscription_body(sub_type, session_id, self._broadcaster_id or "")
        ok = False
        try:
            async with self.session.post(url, json=body, headers=self._helix_headers()) as response:
                if response.status in (200, 202):
                    ok = True
                    logger.debug(f"Subscribed to {sub_type.type}")
                else:
                    detail = await response.text()
                    logger.warning(
                        f"SUBSCRIBE_FAILED: twitch/eventsub {sub_type.type}: "
                        f"HTTP {response.status} {detail[:200]}"
                    )
        except NETWORK_ERRORS as e:
            logger.error(f"SUBSCRIBE_FAILED: twitch/eventsub {sub_type.type}: {e}")
        self.eventsub.acknowledged[sub_type.type] = ok
        return ok

    def _spawn(self, coro: Awaitable[object]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def is_connected(self) -> bool:
        return self.irc.state.status == ConnectionStatus.CONNECTED

    def states(self) -> dict[str, str]:
        return {"irc": str(self.irc.state), "eventsub": str(self.events.state)}

    async def disconnect(self) -> None:
        """Stop reconnecting, close both sockets and the owned HTTP session."""
        self.irc.stop()
        self.events.stop()
        for ws in (self._irc_ws, self._eventsub_ws):
            if ws is not None and not ws.closed:
                await ws.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._session_owned and self._session is not None:
            await self._session.close()
            self._session = None
        logger.info("Twitch adapter disconnected")
