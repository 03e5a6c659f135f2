"""Resume intake configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Each concern gets its own prefix; ``IntakeConfig`` nests them.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP server connection and session-lifecycle settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(default="", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use an implicit TLS connection")
    tls_verify: bool = Field(
        default=True,
        description="Verify the server certificate and hostname",
    )
    username: str = Field(default="", description="IMAP login username")
    password: SecretStr = Field(default=SecretStr(""), description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to poll")
    connect_timeout_seconds: float = Field(
        default=20.0,
        description="Socket timeout for connect, login and every blocking read",
    )
    poll_interval_seconds: float = Field(
        default=10.0,
        description="Seconds between scheduled polling cycles",
    )
    keepalive_interval_seconds: float = Field(
        default=10.0,
        description="Seconds between NOOP keepalives while the session is open",
    )
    reconnect_delay_seconds: float = Field(
        default=30.0,
        description="Wait before reconnecting after a transient network failure",
    )
    reset_reconnect_delay_seconds: float = Field(
        default=10.0,
        description="Shorter wait used when an open session was reset mid-poll",
    )
    max_unreachable_attempts: int = Field(
        default=10,
        description="Consecutive DNS/refused failures before giving up as fatal",
    )


class AcquisitionConfig(BaseSettings):
    """Message acquisition window and per-call timeouts."""

    model_config = {"env_prefix": "ACQUIRE_"}

    window_size: int = Field(default=20, description="Number of newest messages to inspect")
    header_fetch_timeout_seconds: float = Field(
        default=20.0,
        description="Timeout for the windowed header fetch",
    )
    search_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for the fallback SEARCH command",
    )
    body_fetch_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for fetching one complete message",
    )
    processed_set_size: int = Field(
        default=10_000,
        description="Maximum identities remembered by the processed set",
    )


class OcrConfig(BaseSettings):
    """PDF text extraction and OCR fallback settings."""

    model_config = {"env_prefix": "OCR_"}

    enabled: bool = Field(default=True, description="Allow OCR for scanned PDFs")
    language: str = Field(default="eng", description="Tesseract language code")
    min_text_length: int = Field(
        default=50,
        description="Stripped text shorter than this triggers the OCR fallback",
    )
    zoom: float = Field(default=2.0, description="Rasterisation zoom factor for OCR pages")
    pdf_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for the deterministic text extraction pass",
    )
    ocr_timeout_seconds: float = Field(default=120.0, description="Timeout for one OCR job")
    max_concurrent_jobs: int = Field(default=1, description="OCR jobs allowed at once")


class S3Config(BaseSettings):
    """S3 storage for original resume PDFs."""

    model_config = {"env_prefix": "S3_"}

    bucket: str = Field(default="", description="S3 bucket name (empty disables storage)")
    prefix: str = Field(default="resumes", description="S3 key prefix for stored PDFs")
    region: str = Field(default="us-east-1", description="AWS region")
    endpoint_url: str | None = Field(
        default=None,
        description="Custom S3 endpoint URL (e.g. for MinIO)",
    )


class DatabaseConfig(BaseSettings):
    """Candidate store database settings."""

    model_config = {"env_prefix": "DATABASE_"}

    url: str = Field(
        default="postgresql+asyncpg://localhost/resume_intake",
        description="Async SQLAlchemy URL for the candidate store",
    )
    create_schema: bool = Field(
        default=True,
        description="Create the candidates table on startup if missing",
    )


class KafkaConfig(BaseSettings):
    """Kafka settings for candidate notifications."""

    model_config = {"env_prefix": "KAFKA_"}

    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Comma-separated Kafka bootstrap servers (empty disables notifications)",
    )
    events_topic: str = Field(
        default="candidate-events",
        description="Topic that receives candidate notifications",
    )
    producer_acks: str = Field(default="all", description="Producer acknowledgement level")
    producer_compression: str = Field(
        default="gzip",
        description="Compression codec for produced messages",
    )


class RetryConfig(BaseSettings):
    """Retry / backoff settings driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=3, description="Maximum attempts per remote call")
    initial_wait_seconds: float = Field(
        default=1.0,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=30.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class IntakeConfig(BaseSettings):
    """Root configuration for the resume intake service.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "INTAKE_"}

    name: str = Field(default="resume-intake", description="Service name used in logs and health")
    health_port: int = Field(default=8080, description="Port for health and intake endpoints")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="JSON log lines (False for console output)")
    raw_text_excerpt_chars: int = Field(
        default=5000,
        description="Characters of extracted PDF text kept on the record",
    )
    download_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for downloading a resume PDF from a URL",
    )

    imap: ImapConfig = Field(default_factory=ImapConfig)
    acquisition: AcquisitionConfig = Field(default_factory=AcquisitionConfig)
    ocr: OcrConfig = Field(default_factory=OcrConfig)
    s3: S3Config = Field(default_factory=S3Config)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
