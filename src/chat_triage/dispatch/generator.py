"""Reply generator contract and the Anthropic-backed implementation."""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic

from chat_triage.core.logging import get_session_stats, log_llm_call, log_llm_response
from chat_triage.core.scoring import Tier
from chat_triage.dispatch.prompts import (
    build_acknowledgement_prompt,
    build_reply_prompt,
    get_streamer_prompt,
)
from chat_triage.errors import DownstreamGenerationError
from chat_triage.events import ChatEvent
from chat_triage.viewers import ViewerRecord

logger = logging.getLogger(__name__)

_SURROUNDING_QUOTES = re.compile(r"^[\"']+|[\"']+$")


@dataclass
class ReplyContext:
    """Everything the generator is given about one selected message."""

    event: ChatEvent
    tier: Tier
    score: float
    recent_replies: list[str] = field(default_factory=list)
    game_state: dict[str, Any] | None = None
    viewer: ViewerRecord | None = None


class ReplyGenerator(Protocol):
    """External text generator. Raises DownstreamGenerationError on failure."""

    async def generate_reply(self, context: ReplyContext) -> str: ...

    async def generate_acknowledgement(self, event: ChatEvent) -> str: ...


class GameStateProvider(Protocol):
    """Read-only snapshot of whatever the streamer is playing."""

    async def get_game_state(self) -> dict[str, Any] | None: ...


class NullGameState:
    """Used when no game is attached."""

    async def get_game_state(self) -> dict[str, Any] | None:
        return None


def clean_reply(text: str | None, max_length: int) -> str:
    """Strip whitespace and surrounding quotes, then truncate with '...'."""
    if not text:
        return ""
    cleaned = _SURROUNDING_QUOTES.sub("", text.strip()).strip()
    cleaned = cleaned.replace("\u2014", "-")
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - 3] + "..."
    return cleaned


class AnthropicReplyGenerator:
    """Generates replies and thank-yous with the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        streamer_name: str,
        max_response_length: int = 280,
        max_tokens: int = 200,
        client: Any = None,
    ):
        """Initialize the reply generator.

        Args:
            api_key: Anthropic API key (None falls back to ANTHROPIC_API_KEY)
            model: Claude model for reply generation
            streamer_name: Name used in the persona prompt
            max_response_length: Character budget mentioned in the prompt
            max_tokens: Output token cap per call
            client: Pre-built AsyncAnthropic client, mainly for tests
        """
        self._anthropic = client or anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._system_prompt = get_streamer_prompt(streamer_name)
        self._max_response_length = max_response_length
        self._max_tokens = max_tokens

    async def generate_reply(self, context: ReplyContext) -> str:
        user_prompt = build_reply_prompt(context, self._max_response_length)
        return await self._complete(f"Reply ({context.event.username})", user_prompt)

    async def generate_acknowledgement(self, event: ChatEvent) -> str:
        user_prompt = build_acknowledgement_prompt(event)
        return await self._complete(f"Acknowledgement ({event.kind.value})", user_prompt)

    async def _complete(self, operation: str, user_prompt: str) -> str:
        log_llm_call(
            operation=operation,
            model=self._model,
            system_prompt=self._system_prompt,
            user_prompt=user_prompt,
            config={"max_tokens": self._max_tokens},
        )

        try:
            response = await self._anthropic.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=self._system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            )
        except anthropic.APIError as e:
            raise DownstreamGenerationError(f"{operation}: {e}") from e

        get_session_stats().increment_api_call(self._model)

        if response.stop_reason == "max_tokens":
            logger.error(f"CLAUDE_MAX_TOKENS: {operation} hit token limit, discarding")
            raise DownstreamGenerationError(f"{operation}: hit max_tokens")

        raw_content = None
        for block in response.content:
            if block.type == "text":
                raw_content = block.text
                break

        log_llm_response(
            operation=operation,
            response_text=raw_content,
            usage={
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
            },
        )
        logger.info(
            f"RESPONSE: {operation} model={self._model} "
            f"tokens_in={response.usage.input_tokens} "
            f"tokens_out={response.usage.output_tokens}"
        )

        if not raw_content or not raw_content.strip():
            raise DownstreamGenerationError(f"{operation}: empty response")
        return raw_content
