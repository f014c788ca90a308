"""HTTP helpers for platform rate-limit headers."""

import logging
from collections.abc import Mapping

logger = logging.getLogger(__name__)

RATE_LIMIT_RESET_HEADERS = ("x-rate-limit-reset", "ratelimit-reset")


def _header(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in names:
        if name in lowered:
            return lowered[name]
    return None


def parse_reset_epoch(headers: Mapping[str, str]) -> float | None:
    """Epoch seconds from the reset header, or None if absent or garbled."""
    raw = _header(headers, RATE_LIMIT_RESET_HEADERS)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.debug(f"Unparseable rate-limit reset header: {raw!r}")
        return None


def resume_time(headers: Mapping[str, str], now: float, fallback: float = 900.0) -> float:
    """When requests may resume after a 429.

    Uses the platform's reset epoch if present, else ``now + fallback``.
    """
    reset = parse_reset_epoch(headers)
    if reset is not None:
        return max(reset, now)
    return now + fallback
