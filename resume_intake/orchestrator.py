"""Ingestion orchestrator: one polling cycle from mailbox to stored record.

Cycles are mutually exclusive.  A trigger that arrives while a cycle is
running is coalesced into a single follow-up run instead of starting a
second cycle on the same mailbox session.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from .acquirer import MessageAcquirer
from .connection import ConnectionManager
from .errors import FatalConfigurationError, SessionUnavailableError, TransientNetworkError
from .fields import extract_fields
from .models import AttachmentExtract, CandidateRecord, FetchedMessage
from .notifier import NEW_EMAIL_EVENT, EventPublisher
from .parser import MimeParser, ParsedEmail, PdfAttachment
from .pdf_text import DocumentTextExtractor
from .processed import ProcessedIdentitySet
from .storage import PdfStore
from .store import CandidateStore

logger = structlog.get_logger()

MSG_NEW_WITH_PDF = "New email with PDF attachment received!"
MSG_NEW = "New email received!"
MSG_BACKFILLED = "Email updated with PDF attachment data!"
MSG_FROM_URL = "New resume added from URL!"
MSG_UPLOADED = "New resume uploaded!"
DIRECT_INTAKE_SENDER = "resume@url.com"


class DuplicateResumeError(Exception):
    """A directly submitted document already has a stored resume."""


@dataclass
class CycleStats:
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0


@dataclass
class IntakeCounters:
    cycles: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    last_poll_at: datetime | None = None
    last_cycle: CycleStats = field(default_factory=CycleStats)

    def absorb(self, stats: CycleStats) -> None:
        self.cycles += 1
        self.created += stats.created
        self.updated += stats.updated
        self.skipped += stats.skipped
        self.failed += stats.failed
        self.last_poll_at = datetime.now(UTC)
        self.last_cycle = stats


def url_identity(url: str) -> str:
    return "url_" + hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def upload_identity(payload: bytes) -> str:
    return "upload_" + hashlib.sha256(payload).hexdigest()[:16]


class IngestionOrchestrator:
    """Drives acquisition, extraction, persistence and notification."""

    def __init__(
        self,
        *,
        connections: ConnectionManager,
        acquirer: MessageAcquirer,
        extractor: DocumentTextExtractor,
        store: CandidateStore,
        publisher: EventPublisher,
        pdf_store: PdfStore,
        processed: ProcessedIdentitySet,
        parser: MimeParser | None = None,
        raw_text_excerpt_chars: int = 5000,
    ) -> None:
        self._connections = connections
        self._acquirer = acquirer
        self._extractor = extractor
        self._store = store
        self._publisher = publisher
        self._pdf_store = pdf_store
        self._processed = processed
        self._parser = parser or MimeParser()
        self._excerpt_chars = raw_text_excerpt_chars

        self._cycle_lock = asyncio.Lock()
        self._rerun_requested = False
        self.counters = IntakeCounters()

    @property
    def busy(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def processed(self) -> ProcessedIdentitySet:
        return self._processed

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    async def trigger(self, reason: str) -> bool:
        """Run a cycle now, or queue one rerun if a cycle is in progress.

        Returns False when the trigger was coalesced into the running cycle.
        """
        if self._cycle_lock.locked():
            self._rerun_requested = True
            logger.debug("cycle_trigger_coalesced", reason=reason)
            return False

        async with self._cycle_lock:
            self._rerun_requested = True
            while self._rerun_requested:
                self._rerun_requested = False
                await self.run_cycle(reason)
                reason = "rerun"
        return True

    # ------------------------------------------------------------------
    # Mailbox cycle
    # ------------------------------------------------------------------

    async def run_cycle(self, reason: str = "timer") -> CycleStats:
        """One pass over today's mail.

        Raises :class:`FatalConfigurationError` when monitoring must stop;
        transient mailbox failures end the cycle early and are logged.
        """
        stats = CycleStats()
        log = logger.bind(reason=reason)
        log.info("cycle_started")
        try:
            async with self._connections.session_scope() as session:
                descriptors = await self._acquirer.fetch_todays_candidates(session)
                async for fetched in self._acquirer.fetch_full(session, descriptors, self._processed):
                    stats.fetched += 1
                    await self._process_message(fetched, stats)
        except SessionUnavailableError as exc:
            log.info("cycle_skipped", reason_detail=str(exc))
        except TransientNetworkError as exc:
            log.warning("cycle_aborted", error=str(exc))
        except FatalConfigurationError:
            log.error("cycle_halted")
            raise
        finally:
            self.counters.absorb(stats)
            log.info(
                "cycle_finished",
                fetched=stats.fetched,
                created=stats.created,
                updated=stats.updated,
                skipped=stats.skipped,
                failed=stats.failed,
            )
        return stats

    async def _process_message(self, fetched: FetchedMessage, stats: CycleStats) -> None:
        identity = fetched.descriptor.source_identity
        log = logger.bind(uid=fetched.descriptor.uid, source_identity=identity)

        try:
            existing = await self._store.get(identity)
        except Exception:
            log.exception("candidate_lookup_failed")
            stats.failed += 1
            return

        if existing is not None and existing.attachment is not None and existing.attachment.name:
            log.debug("candidate_already_stored")
            self._processed.add(identity)
            stats.skipped += 1
            return

        try:
            parsed = self._parser.parse(fetched.raw_bytes)
            attachment = await self._build_attachment(identity, parsed.pdf) if parsed.pdf else None
        except Exception:
            # extraction failures are not retried
            log.exception("message_extraction_failed")
            self._processed.add(identity)
            stats.failed += 1
            return

        if existing is not None and attachment is None:
            log.debug("candidate_backfill_not_possible")
            self._processed.add(identity)
            stats.skipped += 1
            return

        record = self._record_from_email(identity, parsed, attachment)
        try:
            stored = await self._store.upsert(record)
        except Exception:
            # left out of the processed set so the next cycle retries it
            log.exception("candidate_persist_failed")
            stats.failed += 1
            return

        if existing is None:
            stats.created += 1
            message = MSG_NEW_WITH_PDF if attachment is not None else MSG_NEW
            log.info("candidate_created", has_attachment=record.has_attachment)
        else:
            stats.updated += 1
            message = MSG_BACKFILLED
            log.info("candidate_backfilled")

        await self._notify(message, stored)
        self._processed.add(identity)

    def _record_from_email(
        self,
        identity: str,
        parsed: ParsedEmail,
        attachment: AttachmentExtract | None,
    ) -> CandidateRecord:
        return CandidateRecord(
            source_identity=identity,
            sender=parsed.sender,
            sender_name=parsed.sender_name,
            subject=parsed.subject,
            body=parsed.body,
            received_at=parsed.received_at or datetime.now(UTC),
            has_attachment=attachment is not None,
            attachment=attachment,
        )

    # ------------------------------------------------------------------
    # Shared extraction path
    # ------------------------------------------------------------------

    async def _build_attachment(self, identity: str, pdf: PdfAttachment) -> AttachmentExtract:
        """Store the PDF, extract its text and parse candidate fields."""
        pdf_uri = ""
        try:
            pdf_uri = await self._pdf_store.upload_pdf(identity, pdf.filename, pdf.payload)
        except Exception as exc:
            logger.warning("pdf_store_failed", source_identity=identity, error=str(exc))

        text = await self._extractor.extract_text(pdf.payload)
        if not text.strip():
            logger.info("resume_text_empty", source_identity=identity, filename=pdf.filename)

        extract = extract_fields(text)
        return extract.model_copy(
            update={
                "pdf_uri": pdf_uri,
                "pdf_filename": pdf.filename,
                "raw_text": text[: self._excerpt_chars],
            }
        )

    async def ingest_document(
        self,
        payload: bytes,
        *,
        source_identity: str,
        filename: str,
        origin: str,
    ) -> CandidateRecord:
        """Direct PDF intake (URL or upload) through the same extraction path.

        *origin* is ``"url"`` or ``"upload"``.  Raises
        :class:`DuplicateResumeError` if the identity already has a resume.
        """
        existing = await self._store.get(source_identity)
        if existing is not None and existing.has_resume:
            raise DuplicateResumeError(source_identity)

        pdf = PdfAttachment(filename=filename, content_type="application/pdf", payload=payload)
        attachment = await self._build_attachment(source_identity, pdf)

        fallback_name = "Resume from URL" if origin == "url" else "Uploaded resume"
        record = CandidateRecord(
            source_identity=source_identity,
            sender=attachment.email or DIRECT_INTAKE_SENDER,
            sender_name=attachment.name or fallback_name,
            subject=f"Resume: {attachment.name or 'Unknown'} - {attachment.role or 'No Role'}",
            body=f"Resume received via {origin}: {filename}",
            received_at=datetime.now(UTC),
            has_attachment=True,
            attachment=attachment,
        )
        stored = await self._store.upsert(record)
        logger.info("document_ingested", source_identity=source_identity, origin=origin)
        await self._notify(MSG_FROM_URL if origin == "url" else MSG_UPLOADED, stored)
        return stored

    async def _notify(self, message: str, record: CandidateRecord) -> None:
        try:
            await self._publisher.publish(NEW_EMAIL_EVENT, {"message": message, "email": record.to_event()})
        except Exception as exc:
            logger.warning("candidate_notify_failed", source_identity=record.source_identity, error=str(exc))
