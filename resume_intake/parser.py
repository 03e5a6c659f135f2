"""Full MIME parse of a fetched message: sender, body text, first PDF."""

from __future__ import annotations

import base64
import binascii
import email
import email.message
import email.policy
import email.utils
import html
import re
from dataclasses import dataclass
from datetime import datetime

from .envelope import parse_date

DEFAULT_SENDER = "unknown@example.com"
DEFAULT_SUBJECT = "No Subject"
EMPTY_BODY = "(No content)"

_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_BLOCK_BREAK_RE = re.compile(r"<\s*(br|/p|/div|/li|/tr|/h[1-6])\b[^>]*>", re.IGNORECASE)
_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


@dataclass
class PdfAttachment:
    """The first PDF attachment found in a message."""

    filename: str
    content_type: str
    payload: bytes


@dataclass
class ParsedEmail:
    sender: str
    sender_name: str
    subject: str
    body: str
    received_at: datetime | None
    pdf: PdfAttachment | None


class MimeParser:
    """Stateless parser: raw RFC 822 bytes -> ParsedEmail."""

    def parse(self, raw_bytes: bytes) -> ParsedEmail:
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

        sender_name, sender = email.utils.parseaddr(str(msg.get("From", "") or ""))
        body_text, body_html = self._extract_bodies(msg)

        return ParsedEmail(
            sender=sender or DEFAULT_SENDER,
            sender_name=sender_name,
            subject=str(msg.get("Subject", "") or "").strip() or DEFAULT_SUBJECT,
            body=render_body(body_text, body_html),
            received_at=parse_date(str(msg.get("Date", "") or "")),
            pdf=self._first_pdf(msg),
        )

    def _extract_bodies(self, msg: email.message.Message) -> tuple[str | None, str | None]:
        """Walk MIME parts and return (plain_text, html_text)."""
        body_text: str | None = None
        body_html: str | None = None

        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            if "attachment" in str(part.get("Content-Disposition", "")):
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue
            try:
                payload = part.get_content()
            except (LookupError, UnicodeDecodeError):
                raw = part.get_payload(decode=True) or b""
                payload = raw.decode("utf-8", errors="replace")

            if content_type == "text/plain" and isinstance(payload, str) and body_text is None:
                body_text = payload
            elif content_type == "text/html" and isinstance(payload, str) and body_html is None:
                body_html = payload

        return body_text, body_html

    def _first_pdf(self, msg: email.message.Message) -> PdfAttachment | None:
        """Return the first PDF attachment; later PDFs are ignored."""
        for part in msg.walk():
            if part.get_content_maintype() == "multipart":
                continue
            filename = part.get_filename() or ""
            if not is_pdf(part.get_content_type(), filename):
                continue
            payload = part.get_payload(decode=True)
            if payload is None:
                payload = part.get_payload()
            data = to_pdf_bytes(payload)
            if not data:
                continue
            return PdfAttachment(
                filename=filename or "resume.pdf",
                content_type="application/pdf",
                payload=data,
            )
        return None


def is_pdf(content_type: str, filename: str) -> bool:
    return content_type.lower() == "application/pdf" or filename.lower().endswith(".pdf")


def to_pdf_bytes(content: bytes | bytearray | memoryview | str | None) -> bytes:
    """Normalise attachment content to raw bytes.

    Accepts bytes-like objects, base64 text, or a latin-1 "binary
    string" as some transports hand back.
    """
    if content is None:
        return b""
    if isinstance(content, bytes):
        return content
    if isinstance(content, bytearray | memoryview):
        return bytes(content)
    if isinstance(content, str):
        compact = re.sub(r"\s+", "", content)
        if compact and not compact.startswith("%PDF"):
            try:
                return base64.b64decode(compact, validate=True)
            except (binascii.Error, ValueError):
                pass
        return content.encode("latin-1", errors="replace")
    raise TypeError(f"Unsupported attachment content type: {type(content).__name__}")


def html_to_text(markup: str) -> str:
    text = _SCRIPT_STYLE_RE.sub("", markup)
    text = _BLOCK_BREAK_RE.sub("\n", text)
    text = _TAG_RE.sub("", text)
    return html.unescape(text)


def render_body(body_text: str | None, body_html: str | None) -> str:
    """Plain text wins; HTML is stripped to text; blank becomes ``(No content)``."""
    if body_text and body_text.strip():
        text = body_text
    elif body_html:
        text = html_to_text(body_html)
    else:
        text = ""
    text = _EXCESS_NEWLINES_RE.sub("\n\n", text.replace("\r\n", "\n")).strip()
    return text or EMPTY_BODY
