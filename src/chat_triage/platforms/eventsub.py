"""Twitch EventSub WebSocket envelope types and notification decoding."""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from chat_triage.errors import ParseError
from chat_triage.events import (
    Bits,
    ChatEvent,
    Follow,
    Platform,
    Raid,
    Redemption,
    Subscription,
)

logger = logging.getLogger(__name__)

SESSION_WELCOME = "session_welcome"
SESSION_KEEPALIVE = "session_keepalive"
SESSION_RECONNECT = "session_reconnect"
NOTIFICATION = "notification"
REVOCATION = "revocation"

_EXTRA_FRACTION = re.compile(r"(\.\d{6})\d+")


class SubscriptionType(BaseModel):
    """An EventSub subscription type to register on each new session."""

    type: str
    version: str
    needs_moderator: bool = False

    def condition(self, broadcaster_id: str, moderator_id: str | None = None) -> dict[str, str]:
        cond = {"broadcaster_user_id": broadcaster_id}
        if self.needs_moderator:
            cond["moderator_user_id"] = moderator_id or broadcaster_id
        if self.type == "channel.raid":
            # Raids are keyed on the receiving channel
            cond = {"to_broadcaster_user_id": broadcaster_id}
        return cond


SUBSCRIPTIONS = [
    SubscriptionType(type="channel.subscribe", version="1"),
    SubscriptionType(type="channel.subscription.gift", version="1"),
    SubscriptionType(type="channel.subscription.message", version="1"),
    SubscriptionType(type="channel.cheer", version="1"),
    SubscriptionType(type="channel.raid", version="1"),
    SubscriptionType(type="channel.follow", version="2", needs_moderator=True),
    SubscriptionType(type="channel.channel_points_custom_reward_redemption.add", version="1"),
]


class EventSubMetadata(BaseModel):
    message_id: str
    message_type: str
    message_timestamp: datetime | None = None
    subscription_type: str | None = None

    @field_validator("message_timestamp", mode="before")
    @classmethod
    def _trim_nanoseconds(cls, value: Any) -> Any:
        # Twitch sends nanosecond precision; datetime holds microseconds
        if isinstance(value, str):
            return _EXTRA_FRACTION.sub(r"\1", value)
        return value


class EventSubMessage(BaseModel):
    """``{metadata: {...}, payload: {...}}`` envelope."""

    metadata: EventSubMetadata
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def message_type(self) -> str:
        return self.metadata.message_type

    @property
    def session(self) -> dict[str, Any]:
        return self.payload.get("session") or {}


class EventSubSession(BaseModel):
    """State of the current EventSub session."""

    session_id: str | None = None
    acknowledged: dict[str, bool] = Field(default_factory=dict)

    def reset(self) -> None:
        self.session_id = None
        self.acknowledged = {}


def parse_envelope(raw: str) -> EventSubMessage:
    """Decode a WebSocket text frame.

    Raises:
        ParseError: If the frame is not a valid envelope
    """
    try:
        return EventSubMessage.model_validate_json(raw)
    except ValidationError as e:
        raise ParseError(f"Invalid EventSub frame: {e.error_count()} errors") from e


def subscription_body(sub_type: SubscriptionType, session_id: str, broadcaster_id: str) -> dict[str, Any]:
    """Request body for ``POST /helix/eventsub/subscriptions``."""
    return {
        "type": sub_type.type,
        "version": sub_type.version,
        "condition": sub_type.condition(broadcaster_id),
        "transport": {"method": "websocket", "session_id": session_id},
    }


def _when(message: EventSubMessage) -> datetime:
    return message.metadata.message_timestamp or datetime.now(timezone.utc)


def parse_notification(message: EventSubMessage) -> ChatEvent | None:
    """Turn a ``notification`` envelope into a typed event.

    Unknown subscription types return None.

    Raises:
        ParseError: If a known type is missing required event fields
    """
    subscription = message.payload.get("subscription") or {}
    sub_type = subscription.get("type") or message.metadata.subscription_type
    event = message.payload.get("event")
    if not isinstance(event, dict):
        raise ParseError(f"Notification without event body ({sub_type})")

    common = {
        "id": message.metadata.message_id,
        "platform": Platform.TWITCH,
        "timestamp": _when(message),
    }

    try:
        if sub_type in ("channel.subscribe", "channel.subscription.message"):
            text = (event.get("message") or {}).get("text")
            return Subscription(
                **common,
                username=event["user_name"],
                user_id=event["user_id"],
                tier=event.get("tier") or "1000",
                months=event.get("cumulative_months") or 1,
                streak_months=event.get("streak_months"),
                is_gift=bool(event.get("is_gift", False)),
                message=text or None,
            )

        if sub_type == "channel.subscription.gift":
            anonymous = bool(event.get("is_anonymous"))
            return Subscription(
                **common,
                username="Anonymous" if anonymous else (event.get("user_name") or ""),
                user_id=event.get("user_id") or "",
                tier=event.get("tier") or "1000",
                is_gift=True,
                gifter_name="Anonymous" if anonymous else event.get("user_name"),
                gift_count=event.get("total") or 1,
            )

        if sub_type == "channel.cheer":
            anonymous = bool(event.get("is_anonymous"))
            return Bits(
                **common,
                username="Anonymous" if anonymous else (event.get("user_name") or ""),
                user_id=event.get("user_id") or "",
                bits=int(event["bits"]),
                message=event.get("message") or "",
                is_anonymous=anonymous,
            )

        if sub_type == "channel.raid":
            return Raid(
                **common,
                username=event["from_broadcaster_user_name"],
                user_id=event.get("from_broadcaster_user_id") or "",
                viewer_count=int(event.get("viewers") or 0),
            )

        if sub_type == "channel.follow":
            return Follow(
                **common,
                username=event["user_name"],
                user_id=event["user_id"],
            )

        if sub_type == "channel.channel_points_custom_reward_redemption.add":
            reward = event.get("reward") or {}
            return Redemption(
                **common,
                username=event["user_name"],
                user_id=event["user_id"],
                reward_title=reward.get("title", ""),
                reward_cost=int(reward.get("cost") or 0),
                user_input=event.get("user_input") or "",
            )
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"Malformed {sub_type} event: {e}") from e

    logger.debug(f"EVENTSUB: ignoring notification type {sub_type}")
    return None
