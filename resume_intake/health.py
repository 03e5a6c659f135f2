"""FastAPI app: health/readiness probes and direct resume intake routes."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import httpx
import structlog
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .models import HealthStatus, ServiceStatus
from .orchestrator import DuplicateResumeError, upload_identity, url_identity
from .retry import with_retry

if TYPE_CHECKING:
    from .service import IntakeService

logger = structlog.get_logger()


class ResumeUrlRequest(BaseModel):
    url: str = Field(description="http(s) URL of a PDF resume")


def validate_pdf_url(url: str) -> str | None:
    """Return an error message, or ``None`` when *url* is acceptable."""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return "Invalid URL format"
    if not parsed.path.lower().endswith(".pdf") and ".pdf" not in url.lower():
        return "URL must point to a PDF file"
    return None


def create_health_app(service: IntakeService) -> FastAPI:
    """Build the service's FastAPI app.

    ``/health`` and ``/ready`` read the service's runtime state; the
    ``/v1/resumes`` routes feed PDFs straight into the orchestrator's
    extraction and persistence path, bypassing the mailbox.
    """
    app = FastAPI(title=f"{service.config.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        counters = service.orchestrator.counters
        status = HealthStatus(
            service_name=service.config.name,
            status=service.status,
            session_state=service.connections.state,
            uptime_seconds=time.monotonic() - service.start_time,
            last_error=service.connections.last_error,
            last_poll_at=counters.last_poll_at,
            details={
                "cycles": counters.cycles,
                "created": counters.created,
                "updated": counters.updated,
                "skipped": counters.skipped,
                "failed": counters.failed,
                "processed_identities": len(service.orchestrator.processed),
            },
        )
        code = 200 if service.status in (ServiceStatus.RUNNING, ServiceStatus.STARTING) else 503
        return JSONResponse(content=status.model_dump(mode="json"), status_code=code)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        is_ready = service.status == ServiceStatus.RUNNING
        return JSONResponse(
            content={"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    @app.get("/v1/resumes")
    async def list_resumes() -> JSONResponse:
        records = await service.store.list_resumes()
        return JSONResponse(content=[r.model_dump(mode="json", by_alias=True) for r in records])

    @app.post("/v1/resumes/from-url")
    async def add_from_url(body: ResumeUrlRequest) -> JSONResponse:
        url = body.url.strip()
        error = validate_pdf_url(url)
        if error:
            return JSONResponse(content={"error": error}, status_code=400)

        try:
            payload = await _download(service, url)
        except httpx.HTTPError as exc:
            logger.warning("resume_download_failed", url=url, error=str(exc))
            return JSONResponse(content={"error": f"Failed to download PDF: {exc}"}, status_code=400)
        if not payload:
            return JSONResponse(content={"error": "Downloaded file is empty"}, status_code=400)

        filename = urlparse(url).path.rsplit("/", 1)[-1] or "resume_from_url.pdf"
        return await _ingest(service, payload, url_identity(url), filename, "url")

    @app.post("/v1/resumes/upload")
    async def upload(request: Request, filename: str = Query(default="resume.pdf")) -> JSONResponse:
        payload = await request.body()
        if not payload:
            return JSONResponse(content={"error": "Request body is empty"}, status_code=400)
        content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
        if content_type != "application/pdf" and not filename.lower().endswith(".pdf"):
            return JSONResponse(content={"error": "Upload must be a PDF file"}, status_code=400)
        return await _ingest(service, payload, upload_identity(payload), filename, "upload")

    return app


async def _download(service: IntakeService, url: str) -> bytes:
    @with_retry(service.config.retry, retryable_exceptions=(httpx.TransportError,))
    async def _get() -> bytes:
        response = await service.http_client.get(
            url,
            follow_redirects=True,
            timeout=service.config.download_timeout_seconds,
        )
        response.raise_for_status()
        return response.content

    return await _get()


async def _ingest(
    service: IntakeService,
    payload: bytes,
    source_identity: str,
    filename: str,
    origin: str,
) -> JSONResponse:
    try:
        record = await service.orchestrator.ingest_document(
            payload,
            source_identity=source_identity,
            filename=filename,
            origin=origin,
        )
    except DuplicateResumeError:
        return JSONResponse(
            content={"error": "This resume has already been added", "sourceIdentity": source_identity},
            status_code=409,
        )
    return JSONResponse(content=record.model_dump(mode="json", by_alias=True), status_code=201)
