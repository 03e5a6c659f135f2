"""Resume intake: mailbox and direct-upload resumes to structured candidate records.

Public API re-exported here for convenience::

    from resume_intake import IntakeConfig, IntakeService, extract_fields
"""

from .acquirer import MessageAcquirer
from .config import (
    AcquisitionConfig,
    DatabaseConfig,
    ImapConfig,
    IntakeConfig,
    KafkaConfig,
    OcrConfig,
    RetryConfig,
    S3Config,
)
from .connection import ConnectionManager
from .errors import (
    FailureKind,
    FatalConfigurationError,
    IntakeError,
    SessionUnavailableError,
    TransientNetworkError,
    classify_failure,
)
from .fields import extract_fields
from .logging import setup_logging
from .mailbox import MailboxSession
from .models import (
    AttachmentExtract,
    CandidateRecord,
    FetchedMessage,
    HealthStatus,
    MessageDescriptor,
    ServiceStatus,
    SessionState,
)
from .orchestrator import IngestionOrchestrator
from .pdf_text import DocumentTextExtractor
from .processed import ProcessedIdentitySet
from .retry import with_retry
from .service import IntakeService

__all__ = [
    "AcquisitionConfig",
    "AttachmentExtract",
    "CandidateRecord",
    "ConnectionManager",
    "DatabaseConfig",
    "DocumentTextExtractor",
    "FailureKind",
    "FatalConfigurationError",
    "FetchedMessage",
    "HealthStatus",
    "ImapConfig",
    "IngestionOrchestrator",
    "IntakeConfig",
    "IntakeError",
    "IntakeService",
    "KafkaConfig",
    "MailboxSession",
    "MessageAcquirer",
    "MessageDescriptor",
    "OcrConfig",
    "ProcessedIdentitySet",
    "RetryConfig",
    "S3Config",
    "ServiceStatus",
    "SessionState",
    "SessionUnavailableError",
    "TransientNetworkError",
    "classify_failure",
    "extract_fields",
    "setup_logging",
    "with_retry",
]
