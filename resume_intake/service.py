"""IntakeService: wires components together and runs until shutdown."""

from __future__ import annotations

import asyncio
import signal
import time

import httpx
import structlog
import uvicorn

from .acquirer import MessageAcquirer
from .config import IntakeConfig
from .connection import ConnectionManager
from .errors import FatalConfigurationError, IntakeError
from .health import create_health_app
from .models import ServiceStatus
from .notifier import EventPublisher
from .orchestrator import IngestionOrchestrator
from .pdf_text import DocumentTextExtractor
from .processed import ProcessedIdentitySet
from .storage import PdfStore
from .store import CandidateStore

logger = structlog.get_logger()


class IntakeService:
    """Long-running resume intake process.

    ``run()`` starts the following concurrently via
    :class:`asyncio.TaskGroup`:

    * the poll loop (one cycle at startup, then every poll interval)
    * the keepalive loop (NOOP while the session is open; new mail
      triggers an immediate "push" cycle)
    * the FastAPI health and intake server

    A fatal configuration error halts both mailbox loops; the health
    server keeps running and reports ``halted`` until shutdown.
    """

    def __init__(
        self,
        config: IntakeConfig,
        *,
        store: CandidateStore | None = None,
        publisher: EventPublisher | None = None,
        pdf_store: PdfStore | None = None,
        connections: ConnectionManager | None = None,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()

        self._shutdown_event = asyncio.Event()
        self._halted = asyncio.Event()

        self.store = store or CandidateStore(config.database)
        self.publisher = publisher or EventPublisher(config.kafka)
        self.pdf_store = pdf_store or PdfStore(config.s3, config.retry)
        self.connections = connections or ConnectionManager(
            config.imap,
            stop_event=self._shutdown_event,
        )
        self.http_client = httpx.AsyncClient(timeout=config.download_timeout_seconds)
        self.orchestrator = IngestionOrchestrator(
            connections=self.connections,
            acquirer=MessageAcquirer(config.acquisition),
            extractor=DocumentTextExtractor(config.ocr),
            store=self.store,
            publisher=self.publisher,
            pdf_store=self.pdf_store,
            processed=ProcessedIdentitySet(config.acquisition.processed_set_size),
            raw_text_excerpt_chars=config.raw_text_excerpt_chars,
        )

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown_event

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    async def _wait_or_shutdown(self, seconds: float) -> bool:
        """Sleep up to *seconds*; True if shutdown was requested meanwhile."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _trigger(self, reason: str) -> None:
        try:
            await self.orchestrator.trigger(reason)
        except FatalConfigurationError as exc:
            self._halt(exc)

    def _halt(self, exc: FatalConfigurationError) -> None:
        if self.status is not ServiceStatus.HALTED:
            self.status = ServiceStatus.HALTED
            self._halted.set()
            logger.error("intake_halted", service=self.config.name, error=str(exc))

    def request_shutdown(self, reason: str) -> None:
        """Stop the loops and the health server; the first request wins."""
        if not self._shutdown_event.is_set():
            logger.info("intake_shutdown_requested", service=self.config.name, reason=reason)
            self._shutdown_event.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown, sig.name)

    def _stopped(self) -> bool:
        return self._shutdown_event.is_set() or self._halted.is_set()

    async def _run_poll_loop(self) -> None:
        logger.info("poll_loop_started", interval_seconds=self.config.imap.poll_interval_seconds)
        await self._trigger("startup")
        while not self._stopped():
            if await self._wait_or_shutdown(self.config.imap.poll_interval_seconds):
                break
            if self._stopped():
                break
            await self._trigger("timer")
        logger.info("poll_loop_stopped")

    async def _run_keepalive_loop(self) -> None:
        while not self._stopped():
            if await self._wait_or_shutdown(self.config.imap.keepalive_interval_seconds):
                break
            if self._stopped() or self.orchestrator.busy:
                continue
            try:
                new_mail = await self.connections.keepalive()
            except FatalConfigurationError as exc:
                self._halt(exc)
                break
            except IntakeError as exc:
                logger.warning("imap_keepalive_failed", error=str(exc))
                continue
            if new_mail:
                logger.info("imap_new_mail_signalled")
                await self._trigger("push")

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        """Start the FastAPI server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start all subsystems and run until shutdown.

        ``asyncio.run(IntakeService(IntakeConfig()).run())``
        """
        self._install_signal_handlers()
        self.start_time = time.monotonic()
        logger.info("intake_starting", service=self.config.name, mailbox=self.config.imap.mailbox)

        await self.store.start()
        await self.pdf_store.start()
        await self.publisher.start()
        self.status = ServiceStatus.RUNNING

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_poll_loop())
                tg.create_task(self._run_keepalive_loop())
                tg.create_task(self._run_health_server())
        except* Exception:
            logger.exception("intake_task_group_error", service=self.config.name)
        finally:
            halted = self.status is ServiceStatus.HALTED
            self.status = ServiceStatus.STOPPING
            await self.connections.close()
            await self.http_client.aclose()
            await self.publisher.stop()
            await self.pdf_store.stop()
            await self.store.stop()
            self.status = ServiceStatus.HALTED if halted else ServiceStatus.STOPPED
            logger.info("intake_stopped", service=self.config.name, halted=halted)
