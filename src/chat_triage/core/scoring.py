"""Deterministic priority scoring for inbound chat events."""

import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum

from chat_triage.config import TriageConfig
from chat_triage.events import Bits, ChatEvent, ChatMessage, Platform, Subscription, bits_to_usd

logger = logging.getLogger(__name__)


class Tier(IntEnum):
    """Coarse priority category. The value is the tier's base score."""

    RANDOM = 10
    KEYWORD = 30
    FIRST_MESSAGE = 40
    MENTION = 45
    QUESTION = 50
    VERIFIED = 55
    MODERATOR = 60
    SUBSCRIBER_CHAT = 70
    DONATION = 100


QUESTION_BONUS = 15
MENTION_BONUS = 10
FIRST_MESSAGE_BONUS = 10
VERIFIED_BONUS = 15
KEYWORD_BONUS = 5
KEYWORD_BONUS_CAP = 20
BITS_BONUS_CAP = 50
SUB_MONTHS_BONUS_CAP = 20
MEGA_DONATION_BONUS = 50

# (minimum followers, bonus), checked top-down
FOLLOWER_BONUSES = ((10_000, 20), (1_000, 10), (100, 5))

QUESTION_PATTERN = re.compile(
    r"^(what|how|why|when|where|who|can|should|is|are|do|does|will|would)\b",
    re.IGNORECASE,
)


@dataclass
class ScoreFactors:
    """Which signals contributed to a score."""

    is_question: bool = False
    mentioned: bool = False
    is_first: bool = False
    keyword_matches: list[str] = field(default_factory=list)
    follower_bonus: int = 0
    bits_bonus: float = 0.0
    months_bonus: float = 0.0
    mega_donation: bool = False

    def __str__(self) -> str:
        parts = []
        if self.is_question:
            parts.append("question")
        if self.mentioned:
            parts.append("mention")
        if self.is_first:
            parts.append("first")
        if self.keyword_matches:
            parts.append(f"keywords={len(self.keyword_matches)}")
        if self.follower_bonus:
            parts.append(f"followers+{self.follower_bonus}")
        if self.bits_bonus:
            parts.append(f"bits+{self.bits_bonus:g}")
        if self.months_bonus:
            parts.append(f"months+{self.months_bonus:g}")
        if self.mega_donation:
            parts.append("mega")
        return f"ScoreFactors({', '.join(parts) or 'none'})"


@dataclass
class ScoreResult:
    """Tier and score for one event."""

    tier: Tier
    score: float
    factors: ScoreFactors

    def __str__(self) -> str:
        return f"Score[{self.tier.name}]={self.score:g} {self.factors}"


class PriorityScorer:
    """Scores chat events into a tier plus a numeric score.

    The tier is the highest category the event matches. The score starts at
    the tier's base value and only ever adds modifiers on top, so it is never
    below its tier's base.
    """

    def __init__(self, config: TriageConfig, bot_names: list[str] | tuple[str, ...] = ()):
        self._config = config
        self._mention_patterns = [
            re.compile(rf"(?<!\w)@?{re.escape(name)}\b", re.IGNORECASE)
            for name in bot_names
            if name
        ]
        self._keywords = [kw.lower() for kw in config.interesting_keywords if kw]

    def is_question(self, text: str) -> bool:
        """A '?' anywhere, or a leading interrogative word."""
        return "?" in text or bool(QUESTION_PATTERN.match(text.strip()))

    def mentions_bot(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self._mention_patterns)

    def match_keywords(self, text: str) -> list[str]:
        lowered = text.lower()
        return [kw for kw in self._keywords if kw in lowered]

    def score(self, event: ChatEvent) -> ScoreResult:
        """Compute tier and score for an event."""
        text = event.text
        factors = ScoreFactors()
        tier = Tier.RANDOM
        modifiers = 0.0

        # Subscriptions with a message and cheers start at the top tier
        if isinstance(event, (Subscription, Bits)):
            tier = Tier.DONATION

        if isinstance(event, ChatMessage):
            if event.bits > 0:
                tier = max(tier, Tier.DONATION)
            if event.is_subscriber:
                tier = max(tier, Tier.SUBSCRIBER_CHAT)
            if event.is_moderator:
                tier = max(tier, Tier.MODERATOR)
            if event.platform == Platform.X and event.is_verified:
                tier = max(tier, Tier.VERIFIED)
                modifiers += VERIFIED_BONUS
            if event.platform == Platform.X:
                factors.follower_bonus = self._follower_bonus(event.follower_count or 0)
                modifiers += factors.follower_bonus
            if event.is_first:
                factors.is_first = True
                tier = max(tier, Tier.FIRST_MESSAGE)
                modifiers += FIRST_MESSAGE_BONUS

        if text and self.is_question(text):
            factors.is_question = True
            tier = max(tier, Tier.QUESTION)
            modifiers += QUESTION_BONUS

        if text and self.mentions_bot(text):
            factors.mentioned = True
            tier = max(tier, Tier.MENTION)
            modifiers += MENTION_BONUS

        factors.keyword_matches = self.match_keywords(text) if text else []
        if factors.keyword_matches:
            tier = max(tier, Tier.KEYWORD)
            modifiers += min(len(factors.keyword_matches) * KEYWORD_BONUS, KEYWORD_BONUS_CAP)

        bits = self._bits(event)
        if bits > 0:
            factors.bits_bonus = min(bits / 10, BITS_BONUS_CAP)
            modifiers += factors.bits_bonus
            if bits_to_usd(bits) >= self._config.mega_donation_threshold:
                factors.mega_donation = True
                modifiers += MEGA_DONATION_BONUS

        if isinstance(event, Subscription) and event.months > 0:
            factors.months_bonus = min(event.months, SUB_MONTHS_BONUS_CAP)
            modifiers += factors.months_bonus

        result = ScoreResult(tier=tier, score=float(tier) + modifiers, factors=factors)
        logger.debug(f"SCORE: {event.platform.value}/{event.username} -> {result}")
        return result

    @staticmethod
    def _bits(event: ChatEvent) -> int:
        if isinstance(event, (Bits, ChatMessage)):
            return event.bits
        return 0

    @staticmethod
    def _follower_bonus(followers: int) -> int:
        for minimum, bonus in FOLLOWER_BONUSES:
            if followers >= minimum:
                return bonus
        return 0
