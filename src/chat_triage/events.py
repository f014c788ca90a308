"""Normalized event model produced by the platform adapters.

Every inbound occurrence is one of a small set of immutable event types.
Each type carries only the fields relevant to it, so the scorer and the
dispatcher can branch on the event class instead of probing a metadata bag.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Platform(Enum):
    """Source platform of an event."""

    TWITCH = "twitch"
    X = "x"


class EventKind(Enum):
    """Channel an event travels on."""

    CHAT = "chat"
    SUBSCRIPTION = "subscription"
    BITS = "bits"
    RAID = "raid"
    FOLLOW = "follow"
    REDEMPTION = "redemption"


# Twitch subscription plans, as reported by IRC tags and EventSub payloads
SUB_TIER_NAMES = {
    "Prime": "Prime",
    "1000": "Tier 1",
    "2000": "Tier 2",
    "3000": "Tier 3",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def bits_to_usd(bits: int) -> float:
    """Rough dollar value of a cheer; 100 bits is about one dollar."""
    return bits / 100


@dataclass(frozen=True, kw_only=True)
class ChatEvent:
    """Fields shared by every normalized event."""

    id: str
    platform: Platform
    username: str
    user_id: str
    timestamp: datetime = field(default_factory=_now)

    kind = EventKind.CHAT

    @property
    def text(self) -> str:
        """Viewer-written text attached to the event, if any."""
        return ""


@dataclass(frozen=True, kw_only=True)
class ChatMessage(ChatEvent):
    """A chat line (Twitch PRIVMSG) or a mention (X)."""

    message: str
    is_subscriber: bool = False
    is_moderator: bool = False
    is_verified: bool = False
    is_first: bool = False
    bits: int = 0
    follower_count: int | None = None
    badges: tuple[str, ...] = ()

    kind = EventKind.CHAT

    @property
    def text(self) -> str:
        return self.message


@dataclass(frozen=True, kw_only=True)
class Subscription(ChatEvent):
    """New sub, resub or gifted sub."""

    tier: str = "1000"
    months: int = 1
    streak_months: int | None = None
    is_gift: bool = False
    gifter_name: str | None = None
    gift_count: int = 1
    message: str | None = None

    kind = EventKind.SUBSCRIPTION

    @property
    def text(self) -> str:
        return self.message or ""

    @property
    def tier_name(self) -> str:
        return SUB_TIER_NAMES.get(self.tier, "sub")


@dataclass(frozen=True, kw_only=True)
class Bits(ChatEvent):
    """A cheer."""

    bits: int
    message: str = ""
    is_anonymous: bool = False

    kind = EventKind.BITS

    @property
    def text(self) -> str:
        return self.message


@dataclass(frozen=True, kw_only=True)
class Raid(ChatEvent):
    """Another channel raiding this one. ``username`` is the raiding channel."""

    viewer_count: int = 0

    kind = EventKind.RAID


@dataclass(frozen=True, kw_only=True)
class Follow(ChatEvent):
    """A new follower."""

    kind = EventKind.FOLLOW


@dataclass(frozen=True, kw_only=True)
class Redemption(ChatEvent):
    """A channel-point reward redemption."""

    reward_title: str = ""
    reward_cost: int = 0
    user_input: str = ""

    kind = EventKind.REDEMPTION

    @property
    def text(self) -> str:
        return self.user_input


@dataclass(frozen=True)
class Disconnected:
    """Terminal signal: a socket gave up reconnecting."""

    platform: Platform
    socket: str
    attempts: int


def has_support_signal(event: ChatEvent) -> bool:
    """True if the event carries a donation, subscription or bits signal."""
    if isinstance(event, (Subscription, Bits)):
        return True
    if isinstance(event, ChatMessage):
        return event.is_subscriber or event.bits > 0
    return False
