"""X (Twitter) adapter: mention polling and reply posting over API v2."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import aiohttp
from oauthlib.oauth1 import Client as OAuth1Client

from chat_triage.config import XConfig
from chat_triage.core.channels import EventBus
from chat_triage.core.logging import get_session_stats
from chat_triage.errors import AuthError, RateLimitError
from chat_triage.events import ChatMessage, Platform
from chat_triage.platforms.connection import NETWORK_ERRORS
from chat_triage.platforms.http import resume_time

logger = logging.getLogger(__name__)

MENTION_PARAMS = {
    "max_results": "10",
    "tweet.fields": "created_at,in_reply_to_user_id,public_metrics",
    "expansions": "author_id",
    "user.fields": "verified,public_metrics",
}


def _newer(candidate: str, current: str | None) -> bool:
    """Tweet ids are numeric strings; compare them as integers."""
    if current is None:
        return True
    try:
        return int(candidate) > int(current)
    except ValueError:
        return False


def _parse_created_at(raw: str | None) -> datetime:
    if raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def to_mention(tweet: dict[str, Any], author: dict[str, Any] | None) -> ChatMessage:
    """Convert a v2 tweet object plus its expanded author into a ChatMessage."""
    author = author or {}
    metrics = author.get("public_metrics") or {}
    return ChatMessage(
        id=tweet["id"],
        platform=Platform.X,
        username=author.get("username") or "unknown",
        user_id=tweet.get("author_id") or "",
        timestamp=_parse_created_at(tweet.get("created_at")),
        message=tweet.get("text", ""),
        is_verified=bool(author.get("verified")),
        follower_count=metrics.get("followers_count"),
    )


class XAdapter:
    """Polls the bot account's mentions and posts replies.

    Mentions are read with the app bearer token. Posting signs each request
    with OAuth 1.0a user-context credentials; without them ``post_tweet``
    logs and returns None.
    """

    def __init__(
        self,
        config: XConfig,
        bus: EventBus,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config = config
        self._bus = bus
        self._session = session
        self._session_owned = session is None
        self._clock = clock

        self.user_id: str | None = None
        self.last_mention_id: str | None = None
        self.rate_limited_until: float = 0.0
        self._poll_task: asyncio.Task | None = None
        self._connected = False

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get the HTTP session, creating one if necessary."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=30))
            self._session_owned = True
        return self._session

    def _bearer_headers(self) -> dict[str, str]:
        token = self._config.bearer_token.get_secret_value() if self._config.bearer_token else ""
        return {"Authorization": f"Bearer {token}"}

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_rate_limited(self) -> bool:
        return self._clock() < self.rate_limited_until

    def _suspend(self, headers: Any, where: str) -> RateLimitError:
        self.rate_limited_until = resume_time(
            headers, self._clock(), self._config.rate_limit_fallback_seconds
        )
        wait = self.rate_limited_until - self._clock()
        logger.warning(f"RATE_LIMITED: x {where}, resuming in {wait:.0f}s")
        return RateLimitError("x", self.rate_limited_until)

    async def connect(self) -> None:
        """Resolve the bot account, prime the mention watermark and start polling.

        Raises:
            AuthError: If the bearer token is missing or rejected
        """
        if not self._config.bearer_token or not self._config.bot_username:
            raise AuthError("x", "bearer token and bot username are required")

        self.user_id = await self.resolve_user_id()
        await self.prime_watermark()

        self._connected = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(f"X adapter started for @{self._config.bot_username}")

    async def resolve_user_id(self) -> str | None:
        """``GET /users/by/username/<bot>`` -> numeric id.

        Raises:
            AuthError: On 401/403
        """
        url = f"{self._config.api_url}/users/by/username/{self._config.bot_username}"
        try:
            async with self.session.get(url, headers=self._bearer_headers()) as response:
                get_session_stats().increment_api_call("x.users")
                if response.status in (401, 403):
                    raise AuthError("x", f"bearer token rejected (HTTP {response.status})")
                if response.status == 429:
                    self._suspend(response.headers, "user lookup")
                    return None
                if response.status != 200:
                    logger.warning(f"X user lookup failed: HTTP {response.status}")
                    return None
                data = await response.json()
        except NETWORK_ERRORS as e:
            logger.error(f"X user lookup failed: {e}")
            return None
        return (data.get("data") or {}).get("id")

    async def prime_watermark(self) -> None:
        """Record the newest existing mention so old mentions are not replayed."""
        if self.user_id is None:
            return
        try:
            data = await self._fetch_mentions({"max_results": "5"})
        except RateLimitError:
            return
        tweets = (data or {}).get("data") or []
        if tweets:
            self.last_mention_id = tweets[0]["id"]
            logger.debug(f"X watermark primed at {self.last_mention_id}")

    async def _fetch_mentions(self, params: dict[str, str]) -> dict[str, Any] | None:
        url = f"{self._config.api_url}/users/{self.user_id}/mentions"
        async with self.session.get(url, params=params, headers=self._bearer_headers()) as response:
            get_session_stats().increment_api_call("x.mentions")
            if response.status == 429:
                raise self._suspend(response.headers, "mentions")
            if response.status != 200:
                logger.warning(f"X mentions poll failed: HTTP {response.status}")
                return None
            return await response.json()

    async def poll_once(self) -> list[ChatMessage]:
        """Fetch mentions newer than the watermark and publish them oldest-first.

        Returns the published mentions. Skipped entirely while rate limited.
        """
        if self.is_rate_limited:
            logger.debug("Skipping X poll - rate limited")
            return []

        if self.user_id is None:
            self.user_id = await self.resolve_user_id()
            if self.user_id is None:
                return []

        params = dict(MENTION_PARAMS)
        if self.last_mention_id:
            params["since_id"] = self.last_mention_id

        try:
            data = await self._fetch_mentions(params)
        except RateLimitError:
            return []
        except NETWORK_ERRORS as e:
            logger.debug(f"X mentions poll error: {e}")
            return []

        tweets = (data or {}).get("data") or []
        if not tweets:
            return []

        users = {u["id"]: u for u in (data.get("includes") or {}).get("users") or []}
        published = []
        # The API returns newest first
        for tweet in reversed(tweets):
            mention = to_mention(tweet, users.get(tweet.get("author_id")))
            if _newer(mention.id, self.last_mention_id):
                self.last_mention_id = mention.id
            self._bus.publish(mention)
            published.append(mention)

        logger.debug(f"X: {len(published)} new mentions, watermark={self.last_mention_id}")
        return published

    async def _poll_loop(self) -> None:
        while self._connected:
            await self.poll_once()
            await asyncio.sleep(self._config.poll_interval_seconds)

    def _oauth_client(self) -> OAuth1Client | None:
        creds = (
            self._config.api_key,
            self._config.api_secret,
            self._config.access_token,
            self._config.access_secret,
        )
        if not all(creds):
            return None
        api_key, api_secret, access_token, access_secret = (c.get_secret_value() for c in creds)
        return OAuth1Client(
            api_key,
            client_secret=api_secret,
            resource_owner_key=access_token,
            resource_owner_secret=access_secret,
        )

    async def post_tweet(self, text: str, reply_to_id: str | None = None) -> str | None:
        """Post a tweet, optionally as a reply. Returns the new tweet id or None."""
        client = self._oauth_client()
        if client is None:
            logger.warning("Cannot post tweet - user-level auth not configured")
            return None

        url = f"{self._config.api_url}/tweets"
        body: dict[str, Any] = {"text": text}
        if reply_to_id:
            body["reply"] = {"in_reply_to_tweet_id": reply_to_id}

        # JSON bodies are not part of the OAuth 1.0a signature base string
        _, headers, _ = client.sign(url, http_method="POST")
        headers["Content-Type"] = "application/json"

        try:
            async with self.session.post(url, json=body, headers=headers) as response:
                get_session_stats().increment_api_call("x.tweets")
                if response.status == 429:
                    self._suspend(response.headers, "post")
                    return None
                if response.status not in (200, 201):
                    detail = await response.text()
                    logger.error(f"SEND_FAILED: x post HTTP {response.status}: {detail[:200]}")
                    return None
                data = await response.json()
        except NETWORK_ERRORS as e:
            logger.error(f"SEND_FAILED: x post: {e}")
            return None

        tweet_id = (data.get("data") or {}).get("id")
        logger.info(f"MSG_SENT: [x] tweet {tweet_id}: {text[:80]}")
        return tweet_id

    def states(self) -> dict[str, str]:
        if not self._connected:
            return {"poll": "DISCONNECTED"}
        return {"poll": "RATE_LIMITED" if self.is_rate_limited else "CONNECTED"}

    async def disconnect(self) -> None:
        self._connected = False
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        if self._session_owned and self._session is not None:
            await self._session.close()
            self._session = None
        logger.info("X adapter disconnected")
