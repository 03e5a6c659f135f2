"""Header-block parsing into :class:`MessageDescriptor`.

Uses ``email.parser.BytesHeaderParser`` which parses *only* the headers
without walking the MIME body, so the windowed header fetch never pays
for attachments.
"""

from __future__ import annotations

import email.header
import email.parser
import email.policy
import email.utils
from datetime import datetime

from .models import MessageDescriptor


def parse_date(value: str | None) -> datetime | None:
    """Parse an RFC 2822 ``Date`` header; ``None`` when absent or malformed."""
    if not value:
        return None
    try:
        return email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None


def descriptor_from_headers(
    uid: str,
    header_bytes: bytes,
    *,
    seq: int | None = None,
    has_body: bool = False,
) -> MessageDescriptor:
    """Build a descriptor from a ``BODY.PEEK[HEADER.FIELDS (...)]`` block."""
    parser = email.parser.BytesHeaderParser(policy=email.policy.compat32)
    headers = parser.parsebytes(header_bytes)
    date_header = str(headers.get("Date", "") or "")

    return MessageDescriptor(
        uid=uid,
        seq=seq,
        sender=_decode(headers.get("From")),
        subject=_decode(headers.get("Subject")),
        date_header=date_header,
        date=parse_date(date_header),
        has_body=has_body,
    )


def _decode(value: object) -> str:
    """Decode RFC 2047 encoded-words into a plain string."""
    if value is None:
        return ""
    parts = email.header.decode_header(str(value))
    decoded = []
    for chunk, charset in parts:
        if isinstance(chunk, bytes):
            try:
                decoded.append(chunk.decode(charset or "utf-8", errors="replace"))
            except LookupError:
                decoded.append(chunk.decode("utf-8", errors="replace"))
        else:
            decoded.append(chunk)
    return "".join(decoded).strip()
