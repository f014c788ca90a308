"""Connection state and reconnect-with-backoff supervision for adapter sockets."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum, auto

import aiohttp

from chat_triage.config import ReconnectConfig
from chat_triage.errors import AuthError, TransientNetworkError
from chat_triage.events import Disconnected, Platform

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    CONNECTING = auto()
    CONNECTED = auto()
    RECONNECTING = auto()
    DISCONNECTED = auto()  # terminal


@dataclass
class ConnectionState:
    """Current lifecycle state of one socket."""

    status: ConnectionStatus = ConnectionStatus.CONNECTING
    attempt: int = 0
    next_delay: float | None = None

    def __str__(self) -> str:
        if self.status == ConnectionStatus.RECONNECTING:
            return f"RECONNECTING(attempt={self.attempt}, delay={self.next_delay:g}s)"
        return self.status.name


@dataclass(frozen=True)
class ReconnectPolicy:
    """``delay = min(base * 2**attempt, cap)``, giving up after ``max_attempts``."""

    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5

    @classmethod
    def from_config(cls, config: ReconnectConfig) -> "ReconnectPolicy":
        return cls(
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            max_attempts=config.max_attempts,
        )

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


class ReconnectRequested(Exception):
    """Raised by a session to reconnect at once, e.g. to a migrated URL."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


SessionFn = Callable[[], Awaitable[None]]
TerminalFn = Callable[[Disconnected], None]

NETWORK_ERRORS = (aiohttp.ClientError, OSError, asyncio.TimeoutError, TransientNetworkError)


class ReconnectingConnection:
    """Runs a socket session, reconnecting with exponential backoff when it ends.

    ``session`` opens the socket and reads until it closes; it must call
    ``mark_connected()`` once the socket is usable, which resets the attempt
    counter. After ``max_attempts`` consecutive failures a single
    ``Disconnected`` signal is emitted and the loop ends for good.
    """

    def __init__(
        self,
        name: str,
        platform: Platform,
        session: SessionFn,
        policy: ReconnectPolicy,
        on_terminal: TerminalFn | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.platform = platform
        self._session = session
        self._policy = policy
        self._on_terminal = on_terminal
        self._sleep = sleep
        self._stopped = False
        self.state = ConnectionState()

    @property
    def label(self) -> str:
        return f"{self.platform.value}/{self.name}"

    def mark_connected(self) -> None:
        if self.state.attempt:
            logger.info(f"RECONNECTED: {self.label} after {self.state.attempt} attempts")
        self.state = ConnectionState(status=ConnectionStatus.CONNECTED)

    def stop(self) -> None:
        self._stopped = True

    async def run(self) -> None:
        while not self._stopped:
            try:
                await self._session()
                if not self._stopped:
                    logger.warning(f"SOCKET_CLOSED: {self.label}")
            except ReconnectRequested as e:
                logger.info(f"RECONNECT: {self.label} requested ({e.reason}), reconnecting now")
                self.state = ConnectionState(status=ConnectionStatus.CONNECTING)
                continue
            except AuthError as e:
                logger.error(f"AUTH_FAILED: {self.label}: {e.detail}")
                self._give_up()
                return
            except NETWORK_ERRORS as e:
                logger.warning(
                    f"SOCKET_ERROR: {self.label} attempt={self.state.attempt}: "
                    f"{type(e).__name__}: {e}"
                )
            except Exception:
                logger.exception(f"SOCKET_ERROR: {self.label} attempt={self.state.attempt}")

            if self._stopped:
                break

            attempt = self.state.attempt + 1
            if attempt > self._policy.max_attempts:
                self._give_up()
                return

            delay = self._policy.delay(attempt)
            self.state = ConnectionState(
                status=ConnectionStatus.RECONNECTING, attempt=attempt, next_delay=delay
            )
            logger.info(f"RECONNECT: {self.label} in {delay:g}s (attempt {attempt})")
            await self._sleep(delay)
            self.state.status = ConnectionStatus.CONNECTING

    def _give_up(self) -> None:
        attempts = self.state.attempt
        self.state = ConnectionState(status=ConnectionStatus.DISCONNECTED, attempt=attempts)
        logger.error(f"GIVING_UP: {self.label} after {attempts} reconnect attempts")
        if self._on_terminal:
            self._on_terminal(
                Disconnected(platform=self.platform, socket=self.name, attempts=attempts)
            )
