"""chat-triage: priority-based chat triage and reply dispatch for live streams."""

__version__ = "0.1.0"
