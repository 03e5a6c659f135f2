"""Tests for resume_intake.pdf_text."""

from __future__ import annotations

import asyncio
import base64
import threading
import time
from unittest.mock import patch

import pytesseract
import pytest

from resume_intake.config import OcrConfig
from resume_intake.pdf_text import DocumentTextExtractor, extract_pdf_text
from tests.conftest import _build_pdf

OCR_TEXT = "JOHN SMITH\nData Analyst\njohn.smith@mail.org\nPhone: 415 555 0199\n"


@pytest.fixture
def ocr_enabled() -> OcrConfig:
    return OcrConfig(enabled=True, min_text_length=50, ocr_timeout_seconds=5.0)


class TestExtractPdfText:
    def test_reads_text_layer(self, resume_pdf: bytes):
        text = extract_pdf_text(resume_pdf)
        assert "JANE DOE" in text
        assert "jane.doe@company.io" in text

    def test_blank_page(self, blank_pdf: bytes):
        assert extract_pdf_text(blank_pdf).strip() == ""


class TestDocumentTextExtractor:
    @pytest.mark.asyncio
    async def test_text_pdf_skips_ocr(self, resume_pdf: bytes, ocr_enabled: OcrConfig):
        extractor = DocumentTextExtractor(ocr_enabled)
        with patch("resume_intake.pdf_text.ocr_pdf") as mock_ocr:
            text = await extractor.extract_text(resume_pdf)
        assert "Senior Software Engineer" in text
        mock_ocr.assert_not_called()

    @pytest.mark.asyncio
    async def test_scanned_pdf_uses_ocr(self, blank_pdf: bytes, ocr_enabled: OcrConfig):
        extractor = DocumentTextExtractor(ocr_enabled)
        with patch("resume_intake.pdf_text.ocr_pdf", return_value=OCR_TEXT) as mock_ocr:
            text = await extractor.extract_text(blank_pdf)
        assert text == OCR_TEXT
        mock_ocr.assert_called_once_with(blank_pdf, "eng", 2.0)

    @pytest.mark.asyncio
    async def test_ocr_disabled_returns_sparse_text(self, blank_pdf: bytes, ocr_config: OcrConfig):
        extractor = DocumentTextExtractor(ocr_config)
        with patch("resume_intake.pdf_text.ocr_pdf") as mock_ocr:
            text = await extractor.extract_text(blank_pdf)
        assert text.strip() == ""
        mock_ocr.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_tesseract_degrades_to_empty(self, blank_pdf: bytes, ocr_enabled: OcrConfig):
        extractor = DocumentTextExtractor(ocr_enabled)
        with patch(
            "resume_intake.pdf_text.ocr_pdf",
            side_effect=pytesseract.TesseractNotFoundError(),
        ):
            text = await extractor.extract_text(blank_pdf)
        assert text.strip() == ""

    @pytest.mark.asyncio
    async def test_ocr_crash_degrades_to_empty(self, blank_pdf: bytes, ocr_enabled: OcrConfig):
        extractor = DocumentTextExtractor(ocr_enabled)
        with patch("resume_intake.pdf_text.ocr_pdf", side_effect=RuntimeError("segfault-ish")):
            text = await extractor.extract_text(blank_pdf)
        assert text.strip() == ""

    @pytest.mark.asyncio
    async def test_ocr_shorter_than_text_layer_ignored(self, ocr_enabled: OcrConfig):
        sparse = _build_pdf("Jane Doe resume")
        extractor = DocumentTextExtractor(ocr_enabled)
        with patch("resume_intake.pdf_text.ocr_pdf", return_value="J"):
            text = await extractor.extract_text(sparse)
        assert "Jane Doe resume" in text

    @pytest.mark.asyncio
    async def test_corrupt_pdf_never_raises(self, ocr_config: OcrConfig):
        extractor = DocumentTextExtractor(ocr_config)
        assert await extractor.extract_text(b"%PDF-1.4 truncated garbage") == ""

    @pytest.mark.asyncio
    async def test_empty_and_unsupported_content(self, ocr_config: OcrConfig):
        extractor = DocumentTextExtractor(ocr_config)
        assert await extractor.extract_text(b"") == ""
        assert await extractor.extract_text(None) == ""
        assert await extractor.extract_text(42) == ""  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_base64_content_accepted(self, resume_pdf: bytes, ocr_config: OcrConfig):
        extractor = DocumentTextExtractor(ocr_config)
        text = await extractor.extract_text(base64.b64encode(resume_pdf).decode())
        assert "JANE DOE" in text


class TestOcrConcurrency:
    @pytest.mark.asyncio
    async def test_timed_out_job_keeps_its_slot(self, blank_pdf: bytes):
        config = OcrConfig(enabled=True, min_text_length=50, ocr_timeout_seconds=0.05, max_concurrent_jobs=1)
        extractor = DocumentTextExtractor(config)
        guard = threading.Lock()
        running = 0
        peak = 0
        calls = 0

        def slow_ocr(pdf_bytes: bytes, language: str, zoom: float) -> str:
            nonlocal running, peak, calls
            with guard:
                running += 1
                calls += 1
                peak = max(peak, running)
            time.sleep(0.2)
            with guard:
                running -= 1
            return OCR_TEXT

        with patch("resume_intake.pdf_text.ocr_pdf", side_effect=slow_ocr):
            texts = await asyncio.gather(*(extractor.extract_text(blank_pdf) for _ in range(3)))
            for _ in range(100):
                if calls == 3 and running == 0:
                    break
                await asyncio.sleep(0.02)

        assert [t.strip() for t in texts] == ["", "", ""]
        assert calls == 3
        assert peak == 1
