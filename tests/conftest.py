"""Pytest configuration and fixtures."""

import json
from collections import defaultdict
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import aiohttp
import pytest

from chat_triage.config import Config, TriageConfig, TwitchConfig, XConfig
from chat_triage.core.channels import EventBus
from chat_triage.core.logging import reset_session_stats
from chat_triage.errors import DownstreamGenerationError
from chat_triage.events import ChatMessage, Platform


@pytest.fixture(autouse=True)
def fresh_session_stats():
    """Session stats are global; start every test from zero."""
    reset_session_stats()
    yield
    reset_session_stats()


@pytest.fixture
def default_config() -> Config:
    """Provide a default configuration for testing."""
    return Config()


@pytest.fixture
def triage_config() -> TriageConfig:
    """Triage config with cost control on (the default)."""
    return TriageConfig()


@pytest.fixture
def open_triage_config() -> TriageConfig:
    """Triage config with cost control off, so plain chat can be queued."""
    return TriageConfig(subscribers_and_donations_only=False)


@pytest.fixture
def bot_names() -> tuple[str, ...]:
    """Names viewers use for the bot."""
    return ("NeuralTau", "tau_bot")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def make_chat():
    """Factory for ChatMessage events with sensible defaults."""
    counter = iter(range(1, 1_000_000))

    def _make(message: str = "hello there", **kwargs: Any) -> ChatMessage:
        n = next(counter)
        fields = {
            "id": f"msg-{n}",
            "platform": Platform.TWITCH,
            "username": f"viewer{n}",
            "user_id": str(n),
        }
        fields.update(kwargs)
        return ChatMessage(message=message, **fields)

    return _make


class FakeResponse:
    """Stand-in for an aiohttp response used as an async context manager."""

    def __init__(self, status: int = 200, payload: Any = None, headers: dict[str, str] | None = None):
        self.status = status
        self._payload = payload if payload is not None else {}
        self.headers = headers or {}

    async def json(self) -> Any:
        return self._payload

    async def text(self) -> str:
        return json.dumps(self._payload)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class FakeWebSocket:
    """Replays queued text frames, then closes. Records everything sent."""

    def __init__(self, frames: list[str] | None = None):
        self.frames = list(frames or [])
        self.sent: list[str] = []
        self.closed = False

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise aiohttp.ClientConnectionError("socket closed")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True

    def exception(self) -> Exception | None:
        return None

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while self.frames:
            yield SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=self.frames.pop(0))
        self.closed = True

    async def __aenter__(self) -> "FakeWebSocket":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.closed = True


class FakeSession:
    """Routes requests by (method, url suffix) to canned responses.

    A route holding a list pops one response per call, repeating the last.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], list[FakeResponse]] = {}
        self.sockets: dict[str, list[FakeWebSocket]] = defaultdict(list)
        self.requests: list[dict[str, Any]] = []
        self.closed = False

    def route(self, method: str, suffix: str, *responses: FakeResponse) -> None:
        self.routes[(method, suffix)] = list(responses)

    def _respond(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"method": method, "url": url, **kwargs})
        for (route_method, suffix), responses in self.routes.items():
            if route_method == method and url.endswith(suffix):
                return responses.pop(0) if len(responses) > 1 else responses[0]
        return FakeResponse(status=404)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("POST", url, **kwargs)

    def ws_connect(self, url: str, **kwargs: Any) -> FakeWebSocket:
        self.requests.append({"method": "WS", "url": url})
        queued = self.sockets.get(url)
        if not queued:
            raise aiohttp.ClientConnectionError(f"no socket for {url}")
        return queued.pop(0)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def twitch_config() -> TwitchConfig:
    return TwitchConfig(
        access_token="oauth:abc123",
        client_id="client-id",
        channel="#TestChannel",
        bot_username="tau_bot",
    )


@pytest.fixture
def x_config() -> XConfig:
    return XConfig(bearer_token="bearer-token", bot_username="tau_bot")


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_content = """
twitch:
  channel: "testchannel"
  bot_username: "tau_bot"
  client_id: "abc"

x:
  enabled: false

triage:
  max_responses_per_minute: 4
  auto_respond_threshold: 75
  interesting_keywords:
    - "speedrun"

responder:
  streamer_name: "Tau"
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)
    return config_path


class FakeGenerator:
    """Reply generator returning canned text, or raising when ``fail`` is set."""

    def __init__(self, reply: str = "great question!", acknowledgement: str = "thank you!"):
        self.reply = reply
        self.acknowledgement = acknowledgement
        self.fail = False
        self.contexts: list = []
        self.acknowledged: list = []

    async def generate_reply(self, context) -> str:
        self.contexts.append(context)
        if self.fail:
            raise DownstreamGenerationError("generator down")
        return self.reply

    async def generate_acknowledgement(self, event) -> str:
        self.acknowledged.append(event)
        if self.fail:
            raise DownstreamGenerationError("generator down")
        return self.acknowledgement


class FakeTwitch:
    """Records chat sends instead of writing to IRC."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.messages: list[str] = []
        self.replies: list[tuple[str, str]] = []

    async def send_message(self, text: str) -> bool:
        self.messages.append(text)
        return self.ok

    async def reply_to_message(self, message_id: str, text: str) -> bool:
        self.replies.append((message_id, text))
        return self.ok


class FakeX:
    """Records posted tweets."""

    def __init__(self):
        self.posts: list[tuple[str, str | None]] = []

    async def post_tweet(self, text: str, reply_to_id: str | None = None) -> str | None:
        self.posts.append((text, reply_to_id))
        return f"tweet-{len(self.posts)}"


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def twitch_sender() -> FakeTwitch:
    return FakeTwitch()
