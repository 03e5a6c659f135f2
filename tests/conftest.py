"""Shared test fixtures for the resume intake test suite."""

from __future__ import annotations

from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from unittest.mock import MagicMock

import fitz
import pytest

from resume_intake.config import (
    AcquisitionConfig,
    DatabaseConfig,
    ImapConfig,
    IntakeConfig,
    KafkaConfig,
    OcrConfig,
    RetryConfig,
    S3Config,
)

RESUME_TEXT = (
    "JANE DOE\n"
    "Senior Software Engineer\n"
    "Email: jane.doe@company.io\n"
    "Phone: +1 415-555-0101\n"
    "Date of Birth: 12/04/1990\n"
    "Total Experience: 6 years\n"
    "Built data pipelines and internal tooling for recruiting teams."
)


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser",
        password="testpass",
        mailbox="INBOX",
        connect_timeout_seconds=1.0,
        poll_interval_seconds=0.01,
        keepalive_interval_seconds=0.01,
        reconnect_delay_seconds=30.0,
        reset_reconnect_delay_seconds=10.0,
        max_unreachable_attempts=3,
    )


@pytest.fixture
def acquisition_config() -> AcquisitionConfig:
    return AcquisitionConfig(
        window_size=20,
        header_fetch_timeout_seconds=1.0,
        search_timeout_seconds=1.0,
        body_fetch_timeout_seconds=1.0,
    )


@pytest.fixture
def ocr_config() -> OcrConfig:
    return OcrConfig(enabled=False)


@pytest.fixture
def s3_config() -> S3Config:
    return S3Config(bucket="test-bucket", prefix="resumes", region="us-east-1")


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_attempts=3, initial_wait_seconds=0.01, max_wait_seconds=0.05)


@pytest.fixture
def database_config(tmp_path) -> DatabaseConfig:
    return DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'candidates.db'}")


@pytest.fixture
def intake_config(
    imap_config: ImapConfig,
    acquisition_config: AcquisitionConfig,
    ocr_config: OcrConfig,
    database_config: DatabaseConfig,
    retry_config: RetryConfig,
) -> IntakeConfig:
    return IntakeConfig(
        name="intake-test",
        health_port=18080,
        imap=imap_config,
        acquisition=acquisition_config,
        ocr=ocr_config,
        s3=S3Config(bucket=""),
        database=database_config,
        kafka=KafkaConfig(bootstrap_servers=""),
        retry=retry_config,
    )


# ------------------------------------------------------------------
# PDF and EML builders
# ------------------------------------------------------------------


def _build_pdf(text: str = RESUME_TEXT) -> bytes:
    """Build a one-page PDF whose text layer holds *text* line by line."""
    doc = fitz.open()
    page = doc.new_page()
    y = 72
    for line in text.splitlines():
        page.insert_text((72, y), line, fontsize=11)
        y += 16
    data = doc.tobytes()
    doc.close()
    return data


def _build_plain_email(
    *,
    subject: str = "Application",
    from_addr: str = "Jane Doe <jane.doe@company.io>",
    body: str = "Please find my resume attached.",
    date: str = "Mon, 02 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = "jobs@hiring.test"
    msg["Date"] = date
    return msg.as_bytes()


def _build_html_email(*, body_html: str = "<p>Hello&nbsp;there</p><p>Second</p>") -> bytes:
    msg = MIMEText(body_html, "html")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@hiring.test"
    msg["To"] = "jobs@hiring.test"
    msg["Date"] = "Mon, 02 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Resume attached.",
    body_html: str | None = None,
    attachments: list[tuple[str, str, bytes]] | None = None,
    from_addr: str = "Jane Doe <jane.doe@company.io>",
    subject: str = "Application: Software Engineer",
    date: str = "Mon, 02 Jun 2025 12:00:00 +0000",
) -> bytes:
    """Build a multipart email with a text body and optional attachments."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = "jobs@hiring.test"
    msg["Date"] = date

    if body_html is None:
        msg.attach(MIMEText(body_text, "plain"))
    else:
        alt = MIMEMultipart("alternative")
        alt.attach(MIMEText(body_text, "plain"))
        alt.attach(MIMEText(body_html, "html"))
        msg.attach(alt)

    for filename, content_type, payload in attachments or []:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEBase(maintype, subtype)
        part.set_payload(payload)
        encoders.encode_base64(part)
        part.add_header("Content-Disposition", "attachment", filename=filename)
        msg.attach(part)

    return msg.as_bytes()


def _header_block(
    *,
    from_addr: str = "Jane Doe <jane.doe@company.io>",
    subject: str = "Application",
    date: str = "Mon, 02 Jun 2025 12:00:00 +0000",
) -> bytes:
    return f"From: {from_addr}\r\nSubject: {subject}\r\nDate: {date}\r\n\r\n".encode()


def _make_mock_imap(
    *,
    exists: int = 0,
    capabilities: tuple[str, ...] = ("IMAP4REV1", "IDLE"),
) -> MagicMock:
    """Create a mock imaplib.IMAP4_SSL with programmed lifecycle responses."""
    mock = MagicMock()
    mock.capabilities = capabilities
    mock.login.return_value = ("OK", [b"Logged in"])
    mock.select.return_value = ("OK", [str(exists).encode()])
    mock.close.return_value = ("OK", [b"Closed"])
    mock.logout.return_value = ("BYE", [b"Bye"])
    mock.noop.return_value = ("OK", [b"NOOP completed"])
    mock.response.return_value = ("EXISTS", [None])
    return mock


@pytest.fixture
def resume_pdf() -> bytes:
    return _build_pdf()


@pytest.fixture
def blank_pdf() -> bytes:
    return _build_pdf("")


@pytest.fixture
def resume_eml(resume_pdf: bytes) -> bytes:
    return _build_multipart_email(attachments=[("jane_doe.pdf", "application/pdf", resume_pdf)])
