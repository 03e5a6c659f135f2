"""Message acquisition: windowed header fetch with a search fallback.

The primary strategy never issues SEARCH, which some providers throttle:
it reads the mailbox size, fetches From/Subject/Date for the newest
``window_size`` sequence numbers and filters them to today.  Servers
that do not advertise IMAP4rev1 sequence FETCH, or that reject the
windowed fetch, fall back to ``UID SEARCH ALL`` under a short timeout.
"""

from __future__ import annotations

import dataclasses
import imaplib
from collections.abc import AsyncIterator, Callable
from datetime import date, datetime

import structlog

from .config import AcquisitionConfig
from .envelope import descriptor_from_headers
from .mailbox import FetchItem, MailboxSession
from .models import FetchedMessage, MessageDescriptor
from .processed import ProcessedIdentitySet

logger = structlog.get_logger()

WINDOWED_FETCH_CAPABILITIES = frozenset({"IMAP4REV1", "IMAP4REV2"})


def _today() -> date:
    return datetime.now().astimezone().date()


class MessageAcquirer:
    """Fetch today's candidate messages from an open :class:`MailboxSession`."""

    def __init__(
        self,
        config: AcquisitionConfig,
        *,
        today: Callable[[], date] = _today,
    ) -> None:
        self._config = config
        self._today = today

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    async def fetch_todays_candidates(self, session: MailboxSession) -> list[MessageDescriptor]:
        """Return headers-only descriptors dated today, oldest first."""
        descriptors: list[MessageDescriptor] | None = None
        if session.capabilities & WINDOWED_FETCH_CAPABILITIES:
            descriptors = await self._fetch_window(session)
        else:
            logger.info("acquire_strategy_selected", strategy="search", reason="no_imap4rev1")

        if descriptors is None:
            descriptors = await self._fetch_via_search(session)

        today = self._today()
        kept = [d for d in descriptors if self._is_today(d, today)]
        logger.info(
            "acquire_candidates",
            inspected=len(descriptors),
            kept=len(kept),
            today=today.isoformat(),
        )
        return kept

    async def _fetch_window(self, session: MailboxSession) -> list[MessageDescriptor] | None:
        """Windowed sequence FETCH; ``None`` means use the fallback."""
        try:
            total = await session.refresh_message_count(timeout=self._config.header_fetch_timeout_seconds)
            if total <= 0:
                logger.info("acquire_mailbox_empty")
                return []
            start = max(1, total - self._config.window_size + 1)
            logger.info("acquire_strategy_selected", strategy="window", start=start, end=total)
            items = await session.fetch_headers_by_sequence(
                start,
                total,
                timeout=self._config.header_fetch_timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "acquire_window_timeout",
                timeout_seconds=self._config.header_fetch_timeout_seconds,
            )
            return None
        except imaplib.IMAP4.abort:
            raise
        except imaplib.IMAP4.error as exc:
            logger.warning("acquire_window_failed", error=str(exc))
            return None
        return self._to_descriptors(items)

    async def _fetch_via_search(self, session: MailboxSession) -> list[MessageDescriptor]:
        logger.info("acquire_fallback_search")
        try:
            uids = await session.search_all_uids(timeout=self._config.search_timeout_seconds)
        except TimeoutError:
            logger.warning(
                "acquire_search_timeout",
                timeout_seconds=self._config.search_timeout_seconds,
            )
            return []
        recent = uids[-self._config.window_size:]
        if not recent:
            return []
        try:
            items = await session.fetch_headers_by_uid(
                recent,
                timeout=self._config.header_fetch_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("acquire_search_headers_timeout", uids=len(recent))
            return []
        return self._to_descriptors(items)

    def _to_descriptors(self, items: list[FetchItem]) -> list[MessageDescriptor]:
        descriptors = []
        for item in items:
            if item.uid is None:
                logger.debug("acquire_item_without_uid", seq=item.seq)
                continue
            descriptors.append(descriptor_from_headers(item.uid, item.literal, seq=item.seq))
        descriptors.sort(key=lambda d: int(d.uid))
        return descriptors

    @staticmethod
    def _is_today(descriptor: MessageDescriptor, today: date) -> bool:
        if descriptor.date is None:
            # unparseable dates are kept
            logger.debug("acquire_date_unparseable", uid=descriptor.uid, date=descriptor.date_header)
            return True
        local_day = descriptor.date.astimezone().date()
        keep = local_day == today
        logger.debug("acquire_date_filter", uid=descriptor.uid, day=local_day.isoformat(), keep=keep)
        return keep

    # ------------------------------------------------------------------
    # Full content
    # ------------------------------------------------------------------

    async def fetch_full(
        self,
        session: MailboxSession,
        descriptors: list[MessageDescriptor],
        processed: ProcessedIdentitySet,
    ) -> AsyncIterator[FetchedMessage]:
        """Yield complete messages for descriptors not yet processed.

        A body-fetch timeout skips only that message (it stays eligible
        for the next cycle).  A message the server returns without a body
        is marked processed so it is not refetched every tick, and so is one
        the server refuses with a tagged ``NO``/``BAD`` (expunged meanwhile,
        for example).  Only connection-level failures end the batch.
        """
        for descriptor in descriptors:
            identity = descriptor.source_identity
            if identity in processed:
                continue
            try:
                raw = await session.fetch_message(
                    descriptor.uid,
                    timeout=self._config.body_fetch_timeout_seconds,
                )
            except imaplib.IMAP4.abort:
                raise
            except imaplib.IMAP4.error as exc:
                logger.warning("acquire_body_rejected", uid=descriptor.uid, error=str(exc))
                processed.add(identity)
                continue
            except TimeoutError:
                logger.warning(
                    "acquire_body_timeout",
                    uid=descriptor.uid,
                    timeout_seconds=self._config.body_fetch_timeout_seconds,
                )
                continue
            if not raw:
                logger.warning("acquire_body_missing", uid=descriptor.uid)
                processed.add(identity)
                continue
            yield FetchedMessage(
                descriptor=dataclasses.replace(descriptor, has_body=True),
                raw_bytes=raw,
            )
