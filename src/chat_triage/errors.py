"""Exception types shared across adapters, the chat manager and dispatch."""


class TriageError(Exception):
    """Base class for chat-triage errors."""


class ParseError(TriageError):
    """An inbound frame could not be decoded. Always dropped, never fatal."""


class AuthError(TriageError):
    """Credentials were rejected while connecting to a platform."""

    def __init__(self, platform: str, detail: str):
        super().__init__(f"{platform}: {detail}")
        self.platform = platform
        self.detail = detail


class TransientNetworkError(TriageError):
    """A socket closed or errored in a way that warrants reconnecting."""


class RateLimitError(TriageError):
    """The platform answered HTTP 429.

    Attributes:
        resume_at: Epoch seconds after which requests may resume
    """

    def __init__(self, platform: str, resume_at: float):
        super().__init__(f"{platform}: rate limited until {resume_at:.0f}")
        self.platform = platform
        self.resume_at = resume_at


class DownstreamGenerationError(TriageError):
    """The reply generator failed or produced nothing usable."""
