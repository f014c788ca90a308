"""Twitch IRC line framing: tag decoding, line parsing and outbound frames."""

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from chat_triage.errors import ParseError
from chat_triage.events import ChatEvent, ChatMessage, Platform, Raid, Subscription

logger = logging.getLogger(__name__)

CAPABILITIES = "twitch.tv/membership twitch.tv/tags twitch.tv/commands"

# [@tags ][:nick[!user][@host] ]COMMAND[ #channel][ :text]
LINE_PATTERN = re.compile(
    r"^(?:@(?P<tags>\S+) )?"
    r"(?::(?P<nick>[^!@\s]+)(?:!(?P<user>[^@\s]+))?(?:@(?P<host>\S+))? )?"
    r"(?P<command>[A-Za-z]+|\d{3})"
    r"(?P<params>(?: (?!:)\S+)*)"
    r"(?: :(?P<text>.*))?$"
)

_TAG_ESCAPES = {":": ";", "s": " ", "\\": "\\", "r": "\r", "n": "\n"}


@dataclass(frozen=True)
class IrcLine:
    """One decoded IRC line."""

    command: str
    tags: dict[str, str] = field(default_factory=dict)
    nick: str | None = None
    user: str | None = None
    host: str | None = None
    params: tuple[str, ...] = ()
    text: str | None = None

    @property
    def channel(self) -> str | None:
        for param in self.params:
            if param.startswith("#"):
                return param
        return None


def unescape_tag_value(value: str) -> str:
    """Decode IRCv3 tag value escapes (\\s, \\:, \\\\, \\r, \\n)."""
    if "\\" not in value:
        return value
    out = []
    i = 0
    while i < len(value):
        char = value[i]
        if char == "\\" and i + 1 < len(value):
            out.append(_TAG_ESCAPES.get(value[i + 1], value[i + 1]))
            i += 2
            continue
        if char != "\\":
            out.append(char)
        i += 1
    return "".join(out)


def parse_tags(raw: str) -> dict[str, str]:
    """Decode a ``key=value;key2=value2`` tag block into a map."""
    tags: dict[str, str] = {}
    for item in raw.split(";"):
        if not item:
            continue
        key, _, value = item.partition("=")
        tags[key] = unescape_tag_value(value)
    return tags


def parse_line(line: str) -> IrcLine:
    """Parse a single IRC line.

    Raises:
        ParseError: If the line does not look like IRC
    """
    line = line.rstrip("\r\n")
    match = LINE_PATTERN.match(line)
    if not match:
        raise ParseError(f"Unrecognised IRC line: {line[:80]!r}")
    return IrcLine(
        command=match.group("command").upper(),
        tags=parse_tags(match.group("tags")) if match.group("tags") else {},
        nick=match.group("nick"),
        user=match.group("user"),
        host=match.group("host"),
        params=tuple(match.group("params").split()),
        text=match.group("text"),
    )


def split_lines(raw: str) -> list[str]:
    """Split a WebSocket payload into individual IRC lines."""
    return [line for line in raw.split("\r\n") if line]


def badge_names(tags: dict[str, str]) -> tuple[str, ...]:
    """Badge names from ``badges=subscriber/12,premium/1``."""
    return tuple(b.split("/", 1)[0] for b in tags.get("badges", "").split(",") if b)


def _int_tag(tags: dict[str, str], key: str, default: int = 0) -> int:
    try:
        return int(tags.get(key) or default)
    except ValueError:
        return default


def _timestamp(tags: dict[str, str]) -> datetime:
    sent = _int_tag(tags, "tmi-sent-ts")
    if sent:
        return datetime.fromtimestamp(sent / 1000, tz=timezone.utc)
    return datetime.now(timezone.utc)


def to_chat_message(line: IrcLine) -> ChatMessage:
    """Convert a PRIVMSG line into a ChatMessage.

    Raises:
        ParseError: If the line is not a channel PRIVMSG with a sender and text
    """
    if line.command != "PRIVMSG" or not line.nick or line.text is None:
        raise ParseError("Not a PRIVMSG with sender and text")

    tags = line.tags
    badges = badge_names(tags)
    return ChatMessage(
        id=tags.get("id") or str(uuid.uuid4()),
        platform=Platform.TWITCH,
        username=tags.get("display-name") or line.nick,
        user_id=tags.get("user-id") or line.nick,
        timestamp=_timestamp(tags),
        message=line.text.strip(),
        is_subscriber=tags.get("subscriber") == "1" or "subscriber" in badges or "founder" in badges,
        is_moderator=tags.get("mod") == "1" or "moderator" in badges or "broadcaster" in badges,
        is_first=tags.get("first-msg") == "1",
        bits=_int_tag(tags, "bits"),
        badges=badges,
    )


def to_user_notice_event(line: IrcLine) -> ChatEvent | None:
    """Convert a USERNOTICE into a Subscription or Raid.

    USERNOTICE duplicates what EventSub reports; the chat manager
    de-duplicates the two. Other notice kinds return None.
    """
    if line.command != "USERNOTICE":
        return None

    tags = line.tags
    msg_id = tags.get("msg-id", "")
    event_id = tags.get("id") or str(uuid.uuid4())
    timestamp = _timestamp(tags)

    if msg_id in ("sub", "resub"):
        streak = _int_tag(tags, "msg-param-streak-months")
        return Subscription(
            id=event_id,
            platform=Platform.TWITCH,
            username=tags.get("display-name") or tags.get("login", ""),
            user_id=tags.get("user-id", ""),
            timestamp=timestamp,
            tier=tags.get("msg-param-sub-plan") or "1000",
            months=_int_tag(tags, "msg-param-cumulative-months", 1) or 1,
            streak_months=streak or None,
            message=line.text.strip() if line.text else None,
        )

    if msg_id in ("subgift", "anonsubgift"):
        return Subscription(
            id=event_id,
            platform=Platform.TWITCH,
            username=tags.get("msg-param-recipient-display-name", ""),
            user_id=tags.get("msg-param-recipient-id", ""),
            timestamp=timestamp,
            tier=tags.get("msg-param-sub-plan") or "1000",
            months=1,
            is_gift=True,
            gifter_name="Anonymous" if msg_id == "anonsubgift" else tags.get("display-name"),
        )

    if msg_id == "raid":
        return Raid(
            id=event_id,
            platform=Platform.TWITCH,
            username=tags.get("msg-param-displayName") or tags.get("display-name", ""),
            user_id=tags.get("user-id", ""),
            timestamp=timestamp,
            viewer_count=_int_tag(tags, "msg-param-viewerCount"),
        )

    return None


def _clean(text: str) -> str:
    # A stray CR/LF would terminate the frame early
    return text.replace("\r", " ").replace("\n", " ").strip()


def format_privmsg(channel: str, text: str, reply_parent_id: str | None = None) -> str:
    """Build an outbound PRIVMSG frame, optionally threaded as a reply."""
    channel = channel if channel.startswith("#") else f"#{channel}"
    frame = f"PRIVMSG {channel} :{_clean(text)}"
    if reply_parent_id:
        frame = f"@reply-parent-msg-id={reply_parent_id} {frame}"
    return frame


def handshake_frames(token: str, nick: str, channel: str) -> list[str]:
    """Capability request, auth and join, in the order Twitch expects."""
    if token.startswith("oauth:"):
        token = token[len("oauth:"):]
    channel = channel.lstrip("#").lower()
    return [
        f"CAP REQ :{CAPABILITIES}",
        f"PASS oauth:{token}",
        f"NICK {nick.lower()}",
        f"JOIN #{channel}",
    ]
