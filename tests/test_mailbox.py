"""Tests for resume_intake.mailbox."""

from __future__ import annotations

import asyncio
import imaplib
import threading
from unittest.mock import ANY, patch

import pytest

from resume_intake.config import ImapConfig
from resume_intake.errors import FatalConfigurationError, SessionUnavailableError
from resume_intake.mailbox import (
    FULL_BODY,
    HEADER_FIELDS,
    MailboxSession,
    parse_fetch_response,
)
from tests.conftest import _header_block, _make_mock_imap


@pytest.fixture
def session(imap_config: ImapConfig) -> MailboxSession:
    return MailboxSession(imap_config)


async def _open(session: MailboxSession, **mock_kwargs):
    mock_conn = _make_mock_imap(**mock_kwargs)
    with patch("resume_intake.mailbox.imaplib.IMAP4_SSL", return_value=mock_conn):
        await session.connect()
    return mock_conn


class TestParseFetchResponse:
    def test_uid_in_tuple_head(self):
        data = [(b"7 (UID 42 BODY[HEADER.FIELDS (FROM SUBJECT DATE)] {10}", b"From: a\r\n"), b")"]
        items = parse_fetch_response(data)
        assert len(items) == 1
        assert items[0].seq == 7
        assert items[0].uid == "42"
        assert items[0].literal == b"From: a\r\n"

    def test_uid_after_literal(self):
        data = [(b"3 (BODY[HEADER.FIELDS (FROM)] {8}", b"From: b\r\n"), b" UID 99)"]
        items = parse_fetch_response(data)
        assert items[0].seq == 3
        assert items[0].uid == "99"

    def test_several_messages(self):
        data = [
            (b"1 (UID 10 BODY[] {1}", b"a"),
            b")",
            (b"2 (UID 11 BODY[] {1}", b"b"),
            b")",
        ]
        assert [i.uid for i in parse_fetch_response(data)] == ["10", "11"]

    def test_none_entries_ignored(self):
        assert parse_fetch_response([None]) == []


class TestMailboxSessionConnect:
    @pytest.mark.asyncio
    async def test_connect_ssl(self, session: MailboxSession):
        with patch("resume_intake.mailbox.imaplib.IMAP4_SSL") as MockSSL:
            mock_conn = _make_mock_imap(exists=12)
            MockSSL.return_value = mock_conn
            await session.connect()
            MockSSL.assert_called_once_with("imap.test.com", 993, ssl_context=ANY, timeout=1.0)
            mock_conn.login.assert_called_once_with("testuser", "testpass")
            mock_conn.select.assert_called_once_with("INBOX", readonly=True)
        assert session.is_open
        assert session.message_count == 12
        assert "IMAP4REV1" in session.capabilities

    @pytest.mark.asyncio
    async def test_connect_plain(self):
        config = ImapConfig(host="imap.test.com", port=143, use_ssl=False, username="u", password="p")
        session = MailboxSession(config)
        with patch("resume_intake.mailbox.imaplib.IMAP4") as MockIMAP:
            MockIMAP.return_value = _make_mock_imap()
            await session.connect()
            MockIMAP.assert_called_once_with("imap.test.com", 143, timeout=20.0)

    @pytest.mark.asyncio
    async def test_missing_host_is_fatal(self):
        session = MailboxSession(ImapConfig(host="", username="u", password="p"))
        with pytest.raises(FatalConfigurationError):
            await session.connect()

    @pytest.mark.asyncio
    async def test_missing_password_is_fatal(self):
        session = MailboxSession(ImapConfig(host="imap.test.com", username="u"))
        with pytest.raises(FatalConfigurationError):
            await session.connect()

    @pytest.mark.asyncio
    async def test_rejected_login_is_fatal(self, session: MailboxSession):
        mock_conn = _make_mock_imap()
        mock_conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")
        with patch("resume_intake.mailbox.imaplib.IMAP4_SSL", return_value=mock_conn):
            with pytest.raises(FatalConfigurationError, match="login rejected"):
                await session.connect()
        mock_conn.shutdown.assert_called_once()
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_abort_during_login_propagates(self, session: MailboxSession):
        mock_conn = _make_mock_imap()
        mock_conn.login.side_effect = imaplib.IMAP4.abort("socket error: EOF")
        with patch("resume_intake.mailbox.imaplib.IMAP4_SSL", return_value=mock_conn):
            with pytest.raises(imaplib.IMAP4.abort):
                await session.connect()

    @pytest.mark.asyncio
    async def test_select_failure_is_fatal(self, session: MailboxSession):
        mock_conn = _make_mock_imap()
        mock_conn.select.return_value = ("NO", [b"Mailbox does not exist"])
        with patch("resume_intake.mailbox.imaplib.IMAP4_SSL", return_value=mock_conn):
            with pytest.raises(FatalConfigurationError, match="Cannot select"):
                await session.connect()

    @pytest.mark.asyncio
    async def test_connection_refused_propagates(self, session: MailboxSession):
        with patch(
            "resume_intake.mailbox.imaplib.IMAP4_SSL",
            side_effect=ConnectionRefusedError("refused"),
        ):
            with pytest.raises(ConnectionRefusedError):
                await session.connect()

    @pytest.mark.asyncio
    async def test_slow_connect_logs_out_after_timeout(self, imap_config: ImapConfig):
        session = MailboxSession(imap_config.model_copy(update={"connect_timeout_seconds": 0.1}))
        mock_conn = _make_mock_imap()
        release = threading.Event()

        def slow_connect(*args, **kwargs):
            release.wait(timeout=5)
            return mock_conn

        with patch("resume_intake.mailbox.imaplib.IMAP4_SSL", side_effect=slow_connect):
            with pytest.raises(TimeoutError):
                await session.connect()
            release.set()
            for _ in range(200):
                if mock_conn.logout.called:
                    break
                await asyncio.sleep(0.01)

        mock_conn.logout.assert_called_once()
        assert not session.is_open


class TestMailboxSessionClose:
    @pytest.mark.asyncio
    async def test_close_logs_out(self, session: MailboxSession):
        mock_conn = await _open(session)
        await session.close()
        mock_conn.close.assert_called_once()
        mock_conn.logout.assert_called_once()
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_close_idempotent(self, session: MailboxSession):
        mock_conn = await _open(session)
        await session.close()
        await session.close()
        mock_conn.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_close_swallows_errors(self, session: MailboxSession):
        mock_conn = await _open(session)
        mock_conn.close.side_effect = imaplib.IMAP4.abort("gone")
        mock_conn.logout.side_effect = OSError("gone")
        await session.close()
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_close_while_command_in_flight_shuts_socket(self, session: MailboxSession):
        mock_conn = await _open(session)
        lock: threading.Lock = session._lock
        lock.acquire()
        try:
            await session.close()
        finally:
            lock.release()
        mock_conn.shutdown.assert_called_once()
        mock_conn.logout.assert_not_called()


class TestMailboxSessionCommands:
    @pytest.mark.asyncio
    async def test_command_without_connection(self, session: MailboxSession):
        with pytest.raises(SessionUnavailableError):
            await session.noop(timeout=1.0)

    @pytest.mark.asyncio
    async def test_refresh_message_count(self, session: MailboxSession):
        mock_conn = await _open(session, exists=3)
        mock_conn.select.return_value = ("OK", [b"8"])
        assert await session.refresh_message_count(timeout=1.0) == 8
        assert session.message_count == 8

    @pytest.mark.asyncio
    async def test_noop_reports_exists(self, session: MailboxSession):
        mock_conn = await _open(session, exists=3)
        mock_conn.response.return_value = ("EXISTS", [b"4", b"5"])
        assert await session.noop(timeout=1.0) == 5
        assert session.message_count == 5

    @pytest.mark.asyncio
    async def test_noop_without_exists(self, session: MailboxSession):
        await _open(session, exists=3)
        assert await session.noop(timeout=1.0) is None
        assert session.message_count == 3

    @pytest.mark.asyncio
    async def test_noop_failure_raises(self, session: MailboxSession):
        mock_conn = await _open(session)
        mock_conn.noop.return_value = ("BAD", [b"nope"])
        with pytest.raises(imaplib.IMAP4.error):
            await session.noop(timeout=1.0)

    @pytest.mark.asyncio
    async def test_noop_skipped_while_command_in_flight(self, session: MailboxSession):
        mock_conn = await _open(session, exists=3)
        session._lock.acquire()
        try:
            assert await session.noop(timeout=1.0) is None
        finally:
            session._lock.release()
        mock_conn.noop.assert_not_called()
        assert session.is_open

    @pytest.mark.asyncio
    async def test_fetch_headers_by_sequence(self, session: MailboxSession):
        mock_conn = await _open(session, exists=2)
        header = _header_block()
        mock_conn.fetch.return_value = (
            "OK",
            [(b"1 (UID 5 BODY[HEADER.FIELDS (FROM SUBJECT DATE)] {%d}" % len(header), header), b")"],
        )
        items = await session.fetch_headers_by_sequence(1, 2, timeout=1.0)
        mock_conn.fetch.assert_called_once_with("1:2", HEADER_FIELDS)
        assert items[0].uid == "5"
        assert items[0].literal == header

    @pytest.mark.asyncio
    async def test_search_all_uids_sorted_numerically(self, session: MailboxSession):
        mock_conn = await _open(session)
        mock_conn.uid.return_value = ("OK", [b"10 9 100"])
        assert await session.search_all_uids(timeout=1.0) == ["9", "10", "100"]
        mock_conn.uid.assert_called_once_with("SEARCH", None, "ALL")

    @pytest.mark.asyncio
    async def test_search_empty(self, session: MailboxSession):
        mock_conn = await _open(session)
        mock_conn.uid.return_value = ("OK", [b""])
        assert await session.search_all_uids(timeout=1.0) == []

    @pytest.mark.asyncio
    async def test_fetch_headers_by_uid(self, session: MailboxSession):
        mock_conn = await _open(session)
        mock_conn.uid.return_value = ("OK", [(b"1 (UID 7 BODY[] {1}", b"x"), b")"])
        await session.fetch_headers_by_uid(["7", "8"], timeout=1.0)
        mock_conn.uid.assert_called_once_with("FETCH", "7,8", HEADER_FIELDS)

    @pytest.mark.asyncio
    async def test_fetch_headers_by_uid_empty(self, session: MailboxSession):
        mock_conn = await _open(session)
        assert await session.fetch_headers_by_uid([], timeout=1.0) == []
        mock_conn.uid.assert_not_called()

    @pytest.mark.asyncio
    async def test_fetch_message(self, session: MailboxSession):
        mock_conn = await _open(session)
        raw = b"Subject: hi\r\n\r\nbody"
        mock_conn.uid.return_value = ("OK", [(b"1 (UID 7 BODY[] {%d}" % len(raw), raw), b")"])
        assert await session.fetch_message("7", timeout=1.0) == raw
        mock_conn.uid.assert_called_once_with("FETCH", "7", FULL_BODY)

    @pytest.mark.asyncio
    async def test_fetch_message_without_body(self, session: MailboxSession):
        mock_conn = await _open(session)
        mock_conn.uid.return_value = ("OK", [None])
        assert await session.fetch_message("7", timeout=1.0) is None
