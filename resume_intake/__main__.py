"""Entry point for the resume intake service.

Usage::

    python -m resume_intake
"""

from __future__ import annotations

import asyncio

from .config import IntakeConfig
from .logging import setup_logging
from .service import IntakeService


def main() -> None:
    config = IntakeConfig()
    setup_logging(json=config.log_json, level=config.log_level)
    service = IntakeService(config)
    asyncio.run(service.run())


if __name__ == "__main__":
    main()
