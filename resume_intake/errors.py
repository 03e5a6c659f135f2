"""Error taxonomy for the intake pipeline and mailbox failure classification."""

from __future__ import annotations

import imaplib
import socket
import ssl
from enum import Enum


class IntakeError(Exception):
    """Base class for all resume intake errors."""


class TransientNetworkError(IntakeError):
    """A reset, timeout or name-resolution hiccup; retried by the connection policy."""


class FatalConfigurationError(IntakeError):
    """Bad credentials, missing configuration or too many unreachable-host attempts.

    Monitoring halts when this is raised; it is never retried automatically.
    """


class SessionUnavailableError(IntakeError):
    """No live mailbox session for this tick; the next scheduled tick tries again."""


class FailureKind(str, Enum):
    """How the connection manager reacts to a failed mailbox operation."""

    TRANSIENT = "transient"
    RESET = "reset"
    UNREACHABLE = "unreachable"
    FATAL = "fatal"


_RESET_MARKERS = ("reset", "eof", "broken pipe", "socket error")


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an exception raised by a mailbox operation to a :class:`FailureKind`."""
    if isinstance(exc, FatalConfigurationError | ssl.SSLCertVerificationError):
        return FailureKind.FATAL
    if isinstance(exc, TransientNetworkError):
        return classify_failure(exc.__cause__) if exc.__cause__ else FailureKind.TRANSIENT
    if isinstance(exc, socket.gaierror | ConnectionRefusedError):
        return FailureKind.UNREACHABLE
    if isinstance(exc, ConnectionResetError | BrokenPipeError | ConnectionAbortedError):
        return FailureKind.RESET
    if isinstance(exc, imaplib.IMAP4.abort):
        message = str(exc).lower()
        if any(marker in message for marker in _RESET_MARKERS):
            return FailureKind.RESET
        return FailureKind.TRANSIENT
    return FailureKind.TRANSIENT


def diagnostic_hints(exc: BaseException) -> list[str]:
    """Human-readable hints logged once when the mailbox host is unreachable."""
    if isinstance(exc, socket.gaierror):
        return [
            "check IMAP_HOST for typos",
            "check DNS resolution from this host",
            "check outbound network access",
        ]
    if isinstance(exc, ConnectionRefusedError):
        return [
            "check IMAP_PORT (993 for TLS, 143 for plain)",
            "check that IMAP access is enabled for the account",
            "check firewall rules for outbound IMAP",
        ]
    return []
