"""Mailbox session lifecycle: connect, keepalive, classify failures, reconnect."""

from __future__ import annotations

import asyncio
import imaplib
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import structlog

from .config import ImapConfig
from .errors import (
    FailureKind,
    FatalConfigurationError,
    SessionUnavailableError,
    TransientNetworkError,
    classify_failure,
    diagnostic_hints,
)
from .mailbox import MailboxSession
from .models import SessionState

logger = structlog.get_logger()

NETWORK_ERRORS: tuple[type[BaseException], ...] = (OSError, imaplib.IMAP4.error)


class ConnectionManager:
    """Owns the single :class:`MailboxSession` and its state machine.

    ``disconnected -> connecting -> open -> {degraded, disconnected}``.
    Every connect, reconnect and failure transition runs under one
    asyncio lock, so no fetch can start while a reconnect is in flight.
    A fatal error is sticky: :meth:`ensure_session` re-raises it until
    the process is restarted.
    """

    def __init__(
        self,
        config: ImapConfig,
        *,
        session_factory: Callable[[ImapConfig], MailboxSession] = MailboxSession,
        stop_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._stop_event = stop_event
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._session: MailboxSession | None = None
        self._not_before: float = 0.0
        self._unreachable_attempts: int = 0
        self._unreachable_reported: bool = False

        self.state: SessionState = SessionState.DISCONNECTED
        self.last_error: str | None = None
        self.fatal_error: FatalConfigurationError | None = None

    @property
    def session(self) -> MailboxSession | None:
        return self._session

    # ------------------------------------------------------------------
    # Session acquisition
    # ------------------------------------------------------------------

    async def ensure_session(self) -> MailboxSession:
        """Return the live session, connecting if needed.

        Raises :class:`FatalConfigurationError` once monitoring must stop,
        or :class:`SessionUnavailableError` when no session can be had
        this tick.
        """
        async with self._lock:
            if self.fatal_error is not None:
                raise self.fatal_error
            if self.state is SessionState.OPEN and self._session is not None and self._session.is_open:
                return self._session
            if self._clock() < self._not_before:
                raise SessionUnavailableError("reconnect deferred to a later tick")
            return await self._connect()

    @asynccontextmanager
    async def session_scope(self) -> AsyncIterator[MailboxSession]:
        """Yield the live session; mailbox failures inside the block are handled.

        Network and protocol errors trigger :meth:`handle_failure` and
        are re-raised as :class:`TransientNetworkError` (or the sticky
        fatal error) so callers abandon the current cycle only.
        """
        session = await self.ensure_session()
        try:
            yield session
        except NETWORK_ERRORS as exc:
            await self.handle_failure(exc)
            if self.fatal_error is not None:
                raise self.fatal_error from exc
            raise TransientNetworkError(f"{type(exc).__name__}: {exc}") from exc

    async def _connect(self) -> MailboxSession:
        await self._discard_session()
        self.state = SessionState.CONNECTING
        logger.info("imap_connecting", host=self._config.host, port=self._config.port)

        session = self._session_factory(self._config)
        try:
            await session.connect()
        except FatalConfigurationError as exc:
            self._go_fatal(exc)
            raise
        except NETWORK_ERRORS as exc:
            await session.close()
            self._record_connect_failure(exc)
            raise SessionUnavailableError(f"connect failed: {exc}") from exc

        self._session = session
        self.state = SessionState.OPEN
        self.last_error = None
        self._not_before = 0.0
        self._unreachable_attempts = 0
        self._unreachable_reported = False
        return session

    def _record_connect_failure(self, exc: BaseException) -> None:
        self.state = SessionState.DISCONNECTED
        self.last_error = f"{type(exc).__name__}: {exc}"
        kind = classify_failure(exc)

        if kind is FailureKind.FATAL:
            fatal = FatalConfigurationError(f"TLS verification failed: {exc}")
            self._go_fatal(fatal)
            raise fatal from exc

        if kind is FailureKind.UNREACHABLE:
            self._unreachable_attempts += 1
            if not self._unreachable_reported:
                logger.error(
                    "imap_unreachable",
                    host=self._config.host,
                    port=self._config.port,
                    error=self.last_error,
                    hints=diagnostic_hints(exc),
                )
                self._unreachable_reported = True
            if self._unreachable_attempts >= self._config.max_unreachable_attempts:
                fatal = FatalConfigurationError(
                    f"IMAP host unreachable after {self._unreachable_attempts} attempts: {exc}"
                )
                self._go_fatal(fatal)
                raise fatal from exc
            self._not_before = self._clock() + self._config.reconnect_delay_seconds
            return

        logger.warning("imap_connect_failed", host=self._config.host, error=self.last_error)

    # ------------------------------------------------------------------
    # Failure handling
    # ------------------------------------------------------------------

    async def handle_failure(self, exc: BaseException) -> None:
        """Tear down the failed session, back off, and try one reconnect."""
        async with self._lock:
            kind = classify_failure(exc)
            self.last_error = f"{type(exc).__name__}: {exc}"

            if kind is FailureKind.FATAL:
                await self._discard_session()
                fatal = exc if isinstance(exc, FatalConfigurationError) else FatalConfigurationError(str(exc))
                self._go_fatal(fatal)
                return

            self.state = SessionState.DEGRADED
            logger.warning("imap_session_degraded", kind=kind.value, error=self.last_error)
            await self._discard_session()

            delay = (
                self._config.reset_reconnect_delay_seconds
                if kind is FailureKind.RESET
                else self._config.reconnect_delay_seconds
            )
            logger.info("imap_reconnect_scheduled", kind=kind.value, delay_seconds=delay)
            await self._pause(delay)

            if self._stop_event is not None and self._stop_event.is_set():
                self.state = SessionState.DISCONNECTED
                return

            try:
                await self._connect()
            except SessionUnavailableError:
                logger.warning("imap_reconnect_failed", error=self.last_error)

    async def _pause(self, delay: float) -> None:
        if self._stop_event is None:
            await self._sleep(delay)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except TimeoutError:
            pass

    def _go_fatal(self, exc: FatalConfigurationError) -> None:
        self.fatal_error = exc
        self.state = SessionState.DISCONNECTED
        self.last_error = str(exc)
        logger.error("imap_fatal_error", host=self._config.host, error=str(exc))

    async def _discard_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    # ------------------------------------------------------------------
    # Keepalive
    # ------------------------------------------------------------------

    async def keepalive(self) -> bool:
        """NOOP the open session; True when the mailbox reports new messages.

        Does nothing (and never connects) unless the session is open.
        """
        if self.state is not SessionState.OPEN or self._session is None:
            return False
        async with self.session_scope() as session:
            previous = session.message_count
            count = await session.noop(timeout=self._config.connect_timeout_seconds)
        return count is not None and count > previous

    async def close(self) -> None:
        async with self._lock:
            await self._discard_session()
            self.state = SessionState.DISCONNECTED
