"""Core triage logic."""

from .channels import EventBus
from .dedup import NotificationDeduplicator, dedup_key
from .manager import ChatManager
from .queue import MessageQueue, PrioritizedMessage
from .rate_limit import RateLimiter
from .scoring import PriorityScorer, ScoreFactors, ScoreResult, Tier

__all__ = [
    "ChatManager",
    "EventBus",
    "MessageQueue",
    "NotificationDeduplicator",
    "PrioritizedMessage",
    "PriorityScorer",
    "RateLimiter",
    "ScoreFactors",
    "ScoreResult",
    "Tier",
    "dedup_key",
]
