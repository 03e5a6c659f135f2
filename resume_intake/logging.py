"""structlog configuration for the intake process.

Events go through the stdlib ``logging`` root so library output (uvicorn,
SQLAlchemy, botocore) shares the one stdout handler and format.  Secrets
never reach the renderer: credential-named keys are masked and the
userinfo part of any URL (database DSNs, download links) is stripped.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

REDACTED = "***"

_SECRET_KEYS = frozenset({"password", "secret", "token", "authorization", "aws_secret_access_key"})
_URL_USERINFO_RE = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")

# chatty at INFO; capped at WARNING unless the root is stricter
NOISY_LOGGERS = ("aiokafka", "botocore", "urllib3", "sqlalchemy.engine")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential fields and URL userinfo in *event_dict*."""
    for key, value in event_dict.items():
        if key.lower() in _SECRET_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "@" in value and "://" in value:
            event_dict[key] = _URL_USERINFO_RE.sub(rf"\g<scheme>{REDACTED}@", value)
    return event_dict


def setup_logging(*, json: bool = True, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to one stdout handler.

    ``json=False`` switches to the console renderer for local runs.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(root.level, logging.WARNING))
