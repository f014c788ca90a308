"""Streamer persona and prompt builders for replies and acknowledgements."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from chat_triage.events import Bits, ChatEvent, ChatMessage, Raid, Subscription

if TYPE_CHECKING:
    from chat_triage.dispatch.generator import ReplyContext

# Number of recent replies shown to the model so it avoids repeating itself
RECENT_REPLIES_IN_PROMPT = 3


def get_streamer_prompt(streamer_name: str) -> str:
    """System prompt describing the streamer persona."""
    return f"""You are {streamer_name}, an AI streamer playing games live on Twitch and chatting with viewers on X.

## Personality

- Energetic and genuine, with real reactions to what happens on stream
- Appreciative of support without being sycophantic
- Playful banter, and the occasional friendly roast of a viewer who is trolling
- You answer questions directly before riffing on them

## Response Style

- One short message, the way a streamer talks in chat
- No emojis; use words for expression
- Do not use markdown formatting
- Do not prefix your response with your name or wrap it in quotes
- Light swearing is fine if it fits the vibe
- Reference the game when it is relevant
- Don't be cringe or tryhard
"""


def describe_viewer(event: ChatEvent) -> str:
    """Short bracketed tags about who sent the event."""
    parts = []
    if isinstance(event, ChatMessage):
        if event.is_subscriber:
            parts.append("(Subscriber)")
        if event.is_moderator:
            parts.append("(Moderator)")
        if event.bits:
            parts.append(f"(Cheered {event.bits} bits!)")
        if event.is_verified:
            parts.append("(Verified account)")
        if event.follower_count and event.follower_count >= 1000:
            parts.append(f"({event.follower_count // 1000}K followers)")
    elif isinstance(event, Bits):
        parts.append(f"(Cheered {event.bits} bits!)")
    elif isinstance(event, Subscription):
        parts.append(f"(Just subscribed - {event.tier_name}, {event.months} months)")
    return " ".join(parts)


def _format_game_state(state: dict[str, Any]) -> str:
    lines = ["CURRENT GAME STATE:"]
    for key, value in state.items():
        lines.append(f"- {key.replace('_', ' ').capitalize()}: {value}")
    return "\n".join(lines)


def build_reply_prompt(context: ReplyContext, max_length: int) -> str:
    """User prompt for replying to one selected viewer message."""
    event = context.event
    sections = []

    if context.game_state:
        sections.append(_format_game_state(context.game_state))

    viewer_lines = [
        "VIEWER MESSAGE:",
        f"Platform: {event.platform.value}",
        f"Username: {event.username}",
    ]
    tags = describe_viewer(event)
    if tags:
        viewer_lines.append(tags)
    if context.viewer is not None and context.viewer.is_returning:
        viewer_lines.append(f"(Returning viewer, {context.viewer.message_count} messages so far)")
    viewer_lines.append(f'Message: "{event.text}"')
    sections.append("\n".join(viewer_lines))

    recent = context.recent_replies[-RECENT_REPLIES_IN_PROMPT:]
    if recent:
        sections.append(
            "RECENT RESPONSES (avoid similar phrasing):\n"
            + "\n".join(f'- "{r}"' for r in recent)
        )

    sections.append(
        f"Keep it under {max_length} characters. If they asked a question, answer it. "
        "If they are supporting the stream, be genuinely grateful.\n\n"
        "Respond with ONLY the message, nothing else."
    )
    return "\n\n".join(sections)


def build_acknowledgement_prompt(event: ChatEvent) -> str:
    """User prompt for thanking a subscriber, cheerer or raider."""
    if isinstance(event, Subscription) and event.is_gift:
        return (
            "Generate a SHORT thank-you message for a gifted sub.\n"
            f"Gifter: {event.gifter_name or 'Anonymous'}\n"
            f"Recipient: {event.username}\n"
            f"Gifts: {event.gift_count}\n\n"
            "Thank the gifter and welcome the recipient. Under 150 chars. No emojis."
        )
    if isinstance(event, Subscription):
        streak = f" ({event.streak_months} streak!)" if event.streak_months else ""
        message = f'\nTheir message: "{event.message}"' if event.message else ""
        return (
            "Generate a SHORT thank-you message for a subscription.\n"
            f"Username: {event.username}\n"
            f"Tier: {event.tier_name}\n"
            f"Months: {event.months}{streak}{message}\n\n"
            "Be genuinely grateful. Under 150 chars. No emojis."
        )
    if isinstance(event, Raid):
        return (
            "Generate an EXCITED welcome message for a raid.\n"
            f"Raider: {event.username}\n"
            f"Viewers: {event.viewer_count}\n\n"
            "Be hyped! Welcome the raiders. Keep it short and energetic. Under 120 chars. No emojis."
        )
    if isinstance(event, Bits):
        return (
            "Generate a SHORT thank-you message for a cheer.\n"
            f"Username: {event.username}\n"
            f"Bits: {event.bits}\n\n"
            "Be genuinely grateful. Under 120 chars. No emojis."
        )
    raise ValueError(f"No acknowledgement for {event.kind.value} events")


def fallback_acknowledgement(event: ChatEvent) -> str:
    """Template thank-you used when the generator is unavailable."""
    if isinstance(event, Subscription) and event.is_gift:
        gifter = event.gifter_name or "Anonymous"
        if event.username and event.username != gifter:
            return f"Thanks for the gift sub {gifter}! Welcome {event.username}!"
        return f"Thanks for the {event.gift_count} gift subs {gifter}!"
    if isinstance(event, Subscription):
        return f"Thanks for the {event.tier_name} sub {event.username}! You're a legend!"
    if isinstance(event, Raid):
        return f"YOOO {event.username} coming in with {event.viewer_count} viewers! Welcome everyone!"
    if isinstance(event, Bits):
        return f"Thanks for the {event.bits} bits {event.username}!"
    raise ValueError(f"No acknowledgement for {event.kind.value} events")
