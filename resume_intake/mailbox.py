"""Async IMAP session wrapping stdlib imaplib with asyncio.to_thread.

imaplib is blocking and not cancellable, so every command runs in a
worker thread under a per-call ``asyncio.wait_for`` timeout.  A thread
lock serialises commands on the socket: a command that timed out on the
asyncio side still owns the connection until its thread returns, and
the next command waits for it instead of interleaving on the wire.
"""

from __future__ import annotations

import asyncio
import imaplib
import re
import ssl
import threading
from collections.abc import Callable
from typing import Any, NamedTuple, TypeVar

import structlog

from .config import ImapConfig
from .errors import FatalConfigurationError, SessionUnavailableError

logger = structlog.get_logger()

T = TypeVar("T")

HEADER_FIELDS = "(UID BODY.PEEK[HEADER.FIELDS (FROM SUBJECT DATE)])"
FULL_BODY = "(BODY.PEEK[])"

_SEQ_RE = re.compile(rb"^(\d+) \(")
_UID_RE = re.compile(rb"UID (\d+)")


class FetchItem(NamedTuple):
    """One message from a FETCH response."""

    seq: int | None
    uid: str | None
    literal: bytes


def parse_fetch_response(data: list[Any]) -> list[FetchItem]:
    """Collect ``(seq, uid, literal)`` triples from raw imaplib FETCH data.

    Servers place ``UID n`` either before the literal (inside the tuple
    head) or after it (in the trailing bytes item); both are handled.
    """
    items: list[FetchItem] = []
    for part in data:
        if isinstance(part, tuple) and len(part) >= 2:
            head, literal = part[0], part[1]
            seq_match = _SEQ_RE.match(head)
            uid_match = _UID_RE.search(head)
            items.append(
                FetchItem(
                    seq=int(seq_match.group(1)) if seq_match else None,
                    uid=uid_match.group(1).decode() if uid_match else None,
                    literal=literal or b"",
                )
            )
        elif isinstance(part, bytes) and items and items[-1].uid is None:
            uid_match = _UID_RE.search(part)
            if uid_match:
                items[-1] = items[-1]._replace(uid=uid_match.group(1).decode())
    return items


class MailboxSession:
    """One authenticated, read-only IMAP connection.

    Owned by :class:`~resume_intake.connection.ConnectionManager`; never
    reused after :meth:`close`.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None
        self._lock = threading.Lock()
        # guards _conn/_closed between close() and a connect thread that outlived its timeout
        self._state_lock = threading.Lock()
        self._closed = False
        self.message_count: int = 0
        self.capabilities: frozenset[str] = frozenset()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, login, and select the configured mailbox read-only."""
        if not self._config.host or not self._config.username:
            raise FatalConfigurationError("IMAP host and username must be configured")
        if not self._config.password.get_secret_value():
            raise FatalConfigurationError("IMAP password must be configured")

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._connect_sync),
                timeout=self._config.connect_timeout_seconds,
            )
        except TimeoutError:
            await self.close()
            raise
        logger.info(
            "imap_connected",
            host=self._config.host,
            mailbox=self._config.mailbox,
            messages=self.message_count,
        )

    def _connect_sync(self) -> None:
        timeout = self._config.connect_timeout_seconds
        if self._config.use_ssl:
            conn: imaplib.IMAP4 = imaplib.IMAP4_SSL(
                self._config.host,
                self._config.port,
                ssl_context=self._ssl_context(),
                timeout=timeout,
            )
        else:
            conn = imaplib.IMAP4(self._config.host, self._config.port, timeout=timeout)

        try:
            conn.login(self._config.username, self._config.password.get_secret_value())
        except imaplib.IMAP4.abort:
            _shutdown_quietly(conn)
            raise
        except imaplib.IMAP4.error as exc:
            _shutdown_quietly(conn)
            raise FatalConfigurationError(f"IMAP login rejected: {exc}") from exc

        status, data = conn.select(self._config.mailbox, readonly=True)
        if status != "OK":
            _shutdown_quietly(conn)
            raise FatalConfigurationError(f"Cannot select mailbox {self._config.mailbox!r}")

        with self._state_lock:
            abandoned = self._closed
            if not abandoned:
                self.message_count = _parse_count(data)
                self.capabilities = frozenset(str(c).upper() for c in conn.capabilities)
                self._conn = conn
        if abandoned:
            logger.warning("imap_late_connect_discarded", host=self._config.host)
            self._close_sync(conn)

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._config.tls_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def close(self) -> None:
        """Close mailbox and logout; idempotent.

        A connect still running in its worker thread logs itself out on
        completion instead of reviving this session.
        """
        with self._state_lock:
            self._closed = True
            conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._close_sync, conn),
                timeout=self._config.connect_timeout_seconds,
            )
        except TimeoutError:
            _shutdown_quietly(conn)
        logger.info("imap_disconnected", host=self._config.host)

    def _close_sync(self, conn: imaplib.IMAP4) -> None:
        if not self._lock.acquire(blocking=False):
            # a timed-out command still holds the socket; drop it hard
            _shutdown_quietly(conn)
            return
        try:
            try:
                conn.close()
            except (imaplib.IMAP4.error, OSError):
                pass
            try:
                conn.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _call(self, fn: Callable[..., T], *args: Any, timeout: float) -> T:
        if self._conn is None:
            raise SessionUnavailableError("mailbox session is not open")
        return await asyncio.wait_for(
            asyncio.to_thread(self._locked, fn, *args),
            timeout=timeout,
        )

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            return fn(*args)

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise SessionUnavailableError("mailbox session is not open")
        return self._conn

    async def refresh_message_count(self, *, timeout: float) -> int:
        """Re-examine the mailbox and return its current message count."""
        self.message_count = await self._call(self._examine_sync, timeout=timeout)
        return self.message_count

    def _examine_sync(self) -> int:
        status, data = self._require_conn().select(self._config.mailbox, readonly=True)
        if status != "OK":
            raise imaplib.IMAP4.error(f"EXAMINE failed: {data!r}")
        return _parse_count(data)

    async def noop(self, *, timeout: float) -> int | None:
        """Send NOOP; return the newest EXISTS count reported, if any.

        Skipped (returns ``None``) while another command holds the socket,
        so a keepalive never queues behind a long body fetch.
        """
        if self._conn is None:
            raise SessionUnavailableError("mailbox session is not open")
        return await asyncio.wait_for(
            asyncio.to_thread(self._noop_if_idle),
            timeout=timeout,
        )

    def _noop_if_idle(self) -> int | None:
        if not self._lock.acquire(blocking=False):
            logger.debug("imap_noop_skipped", reason="command_in_flight")
            return None
        try:
            return self._noop_sync()
        finally:
            self._lock.release()

    def _noop_sync(self) -> int | None:
        conn = self._require_conn()
        status, data = conn.noop()
        if status != "OK":
            raise imaplib.IMAP4.error(f"NOOP failed: {data!r}")
        _, exists = conn.response("EXISTS")
        counts = [int(v) for v in exists or [] if v is not None]
        if counts:
            self.message_count = counts[-1]
            return counts[-1]
        return None

    async def fetch_headers_by_sequence(self, start: int, end: int, *, timeout: float) -> list[FetchItem]:
        """Fetch UID plus From/Subject/Date for sequence numbers ``start:end``."""
        return await self._call(self._fetch_seq_sync, f"{start}:{end}", timeout=timeout)

    def _fetch_seq_sync(self, message_set: str) -> list[FetchItem]:
        status, data = self._require_conn().fetch(message_set, HEADER_FIELDS)
        if status != "OK":
            raise imaplib.IMAP4.error(f"FETCH failed: {data!r}")
        return parse_fetch_response(data)

    async def search_all_uids(self, *, timeout: float) -> list[str]:
        """``UID SEARCH ALL``; returns UIDs in ascending order."""
        return await self._call(self._search_sync, timeout=timeout)

    def _search_sync(self) -> list[str]:
        status, data = self._require_conn().uid("SEARCH", None, "ALL")
        if status != "OK":
            raise imaplib.IMAP4.error(f"SEARCH failed: {data!r}")
        if not data or not data[0]:
            return []
        return sorted((u.decode() for u in data[0].split()), key=int)

    async def fetch_headers_by_uid(self, uids: list[str], *, timeout: float) -> list[FetchItem]:
        if not uids:
            return []
        return await self._call(self._fetch_uid_sync, ",".join(uids), HEADER_FIELDS, timeout=timeout)

    async def fetch_message(self, uid: str, *, timeout: float) -> bytes | None:
        """Fetch the complete RFC 822 bytes for *uid*; ``None`` if the server sent no body."""
        items = await self._call(self._fetch_uid_sync, uid, FULL_BODY, timeout=timeout)
        for item in items:
            if item.literal:
                return item.literal
        return None

    def _fetch_uid_sync(self, message_set: str, parts: str) -> list[FetchItem]:
        status, data = self._require_conn().uid("FETCH", message_set, parts)
        if status != "OK":
            raise imaplib.IMAP4.error(f"UID FETCH failed: {data!r}")
        return parse_fetch_response(data)


def _parse_count(data: list[Any]) -> int:
    try:
        return int(data[0])
    except (IndexError, TypeError, ValueError):
        return 0


def _shutdown_quietly(conn: imaplib.IMAP4) -> None:
    try:
        conn.shutdown()
    except OSError:
        pass
