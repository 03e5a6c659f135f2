"""PDF text extraction with an OCR fallback for scanned documents.

The deterministic pass uses PyMuPDF.  When it yields almost no text the
pages are rasterised and run through Tesseract, one job at a time, so a
slow OCR cannot monopolise the worker threads the mailbox also needs.
Nothing here raises: every failure degrades to empty text.
"""

from __future__ import annotations

import asyncio
import io

import fitz
import pytesseract
import structlog
from PIL import Image

from .config import OcrConfig
from .parser import to_pdf_bytes

logger = structlog.get_logger()


class DocumentTextExtractor:
    """``extract_text(pdf_bytes) -> str`` with bounded OCR concurrency."""

    def __init__(self, config: OcrConfig) -> None:
        self._config = config
        self._ocr_slots = asyncio.Semaphore(max(1, config.max_concurrent_jobs))

    async def extract_text(self, data: bytes | bytearray | memoryview | str | None) -> str:
        try:
            pdf_bytes = to_pdf_bytes(data)
        except TypeError as exc:
            logger.warning("pdf_content_unsupported", error=str(exc))
            return ""
        if not pdf_bytes:
            logger.warning("pdf_content_empty")
            return ""

        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(extract_pdf_text, pdf_bytes),
                timeout=self._config.pdf_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("pdf_text_timeout", timeout_seconds=self._config.pdf_timeout_seconds)
            text = ""
        except Exception as exc:
            logger.warning("pdf_text_failed", error=str(exc))
            text = ""

        logger.info("pdf_text_extracted", chars=len(text))
        if len(text.strip()) >= self._config.min_text_length:
            return text

        if not self._config.enabled:
            logger.info("pdf_ocr_skipped", reason="disabled", chars=len(text.strip()))
            return text

        ocr_text = await self._ocr(pdf_bytes)
        if len(ocr_text.strip()) > len(text.strip()):
            return ocr_text
        return text

    async def _ocr(self, pdf_bytes: bytes) -> str:
        logger.info("pdf_ocr_fallback", language=self._config.language)
        await self._ocr_slots.acquire()
        # the slot is held until the worker thread finishes, not until we stop waiting
        job = asyncio.ensure_future(
            asyncio.to_thread(ocr_pdf, pdf_bytes, self._config.language, self._config.zoom)
        )
        job.add_done_callback(self._release_ocr_slot)
        try:
            text = await asyncio.wait_for(asyncio.shield(job), timeout=self._config.ocr_timeout_seconds)
        except TimeoutError:
            logger.warning("pdf_ocr_timeout", timeout_seconds=self._config.ocr_timeout_seconds)
            return ""
        except pytesseract.TesseractNotFoundError:
            logger.warning("pdf_ocr_unavailable", reason="tesseract_not_installed")
            return ""
        except Exception as exc:
            logger.warning("pdf_ocr_failed", error=str(exc))
            return ""
        logger.info("pdf_ocr_complete", chars=len(text))
        return text

    def _release_ocr_slot(self, job: asyncio.Future[str]) -> None:
        self._ocr_slots.release()
        if not job.cancelled() and job.exception() is not None:
            logger.debug("pdf_ocr_job_finished", error=str(job.exception()))


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Concatenate the text layer of every page."""
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return "\n".join(page.get_text() for page in doc)


def ocr_pdf(pdf_bytes: bytes, language: str = "eng", zoom: float = 2.0) -> str:
    """Rasterise each page and OCR it with Tesseract."""
    pages: list[str] = []
    matrix = fitz.Matrix(zoom, zoom)
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        for page in doc:
            pix = page.get_pixmap(matrix=matrix)
            image = Image.open(io.BytesIO(pix.tobytes("png")))
            pages.append(pytesseract.image_to_string(image, lang=language))
    return "\n".join(pages)
