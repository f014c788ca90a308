"""Session counters, timing and LLM debug logging."""

import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from typing import Any, Iterator

# Full LLM inputs/outputs go to their own logger so they can be routed separately
_ai_logger = logging.getLogger("chat_triage.ai_debug")
_ai_debug = threading.Event()


def set_ai_debug(enabled: bool) -> None:
    """Turn full prompt/response logging on or off (``--debug-ai``)."""
    if enabled:
        _ai_debug.set()
    else:
        _ai_debug.clear()


def is_ai_debug() -> bool:
    return _ai_debug.is_set()


def _dump(title: str, body: Any) -> str:
    if not isinstance(body, str):
        body = json.dumps(body, indent=2, default=str)
    return f"--- {title} ---\n{body}"


def log_llm_call(
    operation: str,
    model: str,
    system_prompt: str | None = None,
    user_prompt: str | None = None,
    config: dict[str, Any] | None = None,
) -> None:
    """Log what is about to be sent to the model. No-op unless AI debug is on."""
    if not is_ai_debug():
        return

    rule = "=" * 80
    sections = [rule, f"LLM CALL: {operation} [{model}]", rule]
    if system_prompt:
        sections.append(_dump(f"SYSTEM ({len(system_prompt)} chars)", system_prompt))
    if user_prompt:
        sections.append(_dump(f"USER ({len(user_prompt)} chars)", user_prompt))
    if config:
        sections.append(_dump("PARAMS", config))
    _ai_logger.info("\n" + "\n".join(sections))


def log_llm_response(
    operation: str,
    response_text: str | None = None,
    usage: dict[str, Any] | None = None,
) -> None:
    """Log what came back from the model. No-op unless AI debug is on."""
    if not is_ai_debug():
        return

    rule = "-" * 80
    sections = [rule, f"LLM RESPONSE: {operation}", rule]
    sections.append(_dump("TEXT", response_text if response_text else "<empty>"))
    if usage:
        sections.append(_dump("USAGE", usage))
    _ai_logger.info("\n" + "\n".join(sections) + "\n")


@dataclass
class SessionStats:
    """Process-wide triage counters, safe to bump from any task or thread."""

    events_received: int = 0
    events_filtered: int = 0
    duplicates_dropped: int = 0
    messages_queued: int = 0
    messages_selected: int = 0
    replies_sent: int = 0
    acknowledgements_sent: int = 0
    generation_failures: int = 0
    send_failures: int = 0
    api_calls: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment(self, stat: str, amount: int = 1) -> None:
        """Bump an integer counter by name.

        Raises:
            ValueError: If ``stat`` is not one of the integer counters
        """
        if stat.startswith("_") or not isinstance(getattr(self, stat, None), int):
            raise ValueError(f"Unknown counter: {stat}")
        with self._lock:
            setattr(self, stat, getattr(self, stat) + amount)

    def increment_api_call(self, name: str) -> None:
        """Count one outbound API call, keyed by model or endpoint."""
        with self._lock:
            self.api_calls[name] = self.api_calls.get(name, 0) + 1

    def counters(self) -> dict[str, int]:
        with self._lock:
            return {
                f.name: getattr(self, f.name)
                for f in fields(self)
                if f.type is int
            }

    def summary(self) -> dict[str, Any]:
        """Counters under short names, as served by the debug server."""
        c = self.counters()
        with self._lock:
            api_calls = dict(self.api_calls)
        return {
            "received": c["events_received"],
            "filtered": c["events_filtered"],
            "duplicates": c["duplicates_dropped"],
            "queued": c["messages_queued"],
            "selected": c["messages_selected"],
            "replies": c["replies_sent"],
            "acknowledgements": c["acknowledgements_sent"],
            "generation_failures": c["generation_failures"],
            "send_failures": c["send_failures"],
            "api_calls": api_calls,
        }

    def summary_line(self) -> str:
        s = self.summary()
        queued_pct = 100 * s["queued"] / max(1, s["received"])
        return (
            f"received={s['received']} filtered={s['filtered']} dupes={s['duplicates']} "
            f"queued={s['queued']} ({queued_pct:.0f}%) selected={s['selected']} "
            f"replies={s['replies']} acks={s['acknowledgements']} "
            f"gen_failures={s['generation_failures']} send_failures={s['send_failures']}"
        )


_session_stats = SessionStats()
_session_lock = threading.Lock()


def get_session_stats() -> SessionStats:
    with _session_lock:
        return _session_stats


def reset_session_stats() -> None:
    """Start counting from zero. Used between tests."""
    global _session_stats
    with _session_lock:
        _session_stats = SessionStats()


@contextmanager
def log_timing(logger: logging.Logger, operation: str, warn_ms: float | None = None) -> Iterator[None]:
    """Log how long the block took at DEBUG, or at WARNING past ``warn_ms``.

    Example:
        with log_timing(logger, "Selection tick", warn_ms=50):
            manager.tick()
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        if warn_ms is not None and elapsed_ms > warn_ms:
            logger.warning(f"SLOW: {operation} took {elapsed_ms:.1f}ms")
        else:
            logger.debug(f"{operation} completed in {elapsed_ms:.2f}ms")
