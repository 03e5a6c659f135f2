"""Data models for candidate records and service status."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ServiceStatus(str, Enum):
    """Runtime status of the intake service."""

    STARTING = "starting"
    RUNNING = "running"
    HALTED = "halted"
    STOPPING = "stopping"
    STOPPED = "stopped"


class SessionState(str, Enum):
    """Lifecycle state of the mailbox session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class MessageDescriptor:
    """Headers-only view of one remote message.

    ``seq`` is only meaningful within the session that produced it;
    ``uid`` stays valid across reconnects.
    """

    uid: str
    seq: int | None
    sender: str
    subject: str
    date_header: str
    date: datetime | None
    has_body: bool = False

    @property
    def source_identity(self) -> str:
        return f"uid_{self.uid}"


@dataclass(frozen=True)
class FetchedMessage:
    """Complete RFC 822 bytes for a descriptor that survived filtering."""

    descriptor: MessageDescriptor
    raw_bytes: bytes


class AttachmentExtract(BaseModel):
    """Structured fields parsed from the first PDF attachment's text.

    Every field defaults to an empty string; the extractor never fails,
    it only leaves fields unset.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str = Field(default="", description="Candidate full name")
    email: str = Field(default="", description="Candidate email address")
    contact_number: str = Field(default="", description="Phone number, digits only")
    date_of_birth: str = Field(default="", description="Date of birth as written")
    experience: str = Field(default="", description="Experience normalised to 'N years'")
    role: str = Field(default="", description="Current or target role")
    pdf_uri: str = Field(default="", description="Stored-file reference (s3:// URI)")
    pdf_filename: str = Field(default="", description="Original attachment filename")
    raw_text: str = Field(default="", description="Excerpt of the extracted document text")

    @property
    def is_empty(self) -> bool:
        return not (self.name or self.email)


class CandidateRecord(BaseModel):
    """One ingested email or direct upload, keyed by ``source_identity``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_identity: str = Field(description="Stable deduplication key (uid_<uid>, url_..., upload_...)")
    sender: str = Field(default="unknown@example.com", description="Sender email address")
    sender_name: str = Field(default="", description="Sender display name")
    subject: str = Field(default="No Subject", description="Message subject")
    body: str = Field(default="(No content)", description="Plain-text body")
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the message was sent, or ingested when unknown",
    )
    has_attachment: bool = Field(default=False, description="A PDF attachment was found")
    attachment: AttachmentExtract | None = Field(
        default=None,
        description="Fields parsed from the first PDF attachment",
    )

    @property
    def has_resume(self) -> bool:
        """True when the record carries an extract with a name or an email."""
        return self.attachment is not None and not self.attachment.is_empty

    def to_event(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class HealthStatus(BaseModel):
    """Response model for the /health endpoint."""

    service_name: str = Field(description="Name of the intake service")
    status: ServiceStatus = Field(description="Current service status")
    session_state: SessionState = Field(description="Mailbox session state")
    uptime_seconds: float = Field(description="Seconds since the service started")
    last_error: str | None = Field(default=None, description="Most recent mailbox error")
    last_poll_at: datetime | None = Field(default=None, description="Last completed polling cycle")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Counters (records created, updated, skipped, failed)",
    )
