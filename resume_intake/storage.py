"""S3 storage for original resume PDFs.

All boto3 calls are wrapped with ``asyncio.to_thread()`` to avoid blocking.
An empty bucket name disables storage; records then carry no file reference.
"""

from __future__ import annotations

import asyncio
import hashlib
import re

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import RetryConfig, S3Config
from .retry import with_retry

logger = structlog.get_logger()


class PdfStore:
    """Upload resume PDFs and return their ``s3://`` URI."""

    def __init__(self, config: S3Config, retry: RetryConfig | None = None) -> None:
        self._config = config
        self._retry = retry or RetryConfig()
        self._client = None  # type: ignore[assignment]

    @property
    def enabled(self) -> bool:
        return bool(self._config.bucket)

    async def start(self) -> None:
        """Create the boto3 S3 client."""
        if not self.enabled:
            logger.info("pdf_store_disabled")
            return
        kwargs: dict = {"region_name": self._config.region}
        if self._config.endpoint_url:
            kwargs["endpoint_url"] = self._config.endpoint_url
        self._client = await asyncio.to_thread(boto3.client, "s3", **kwargs)
        logger.info("pdf_store_started", bucket=self._config.bucket)

    async def stop(self) -> None:
        self._client = None
        logger.info("pdf_store_stopped")

    async def upload_pdf(self, source_identity: str, filename: str, payload: bytes) -> str:
        """Upload *payload* under ``<prefix>/<source_identity>/``; returns ``""`` when disabled."""
        if not self.enabled:
            return ""
        if self._client is None:
            raise RuntimeError("S3 client not started")
        content_hash = hashlib.sha256(payload).hexdigest()[:12]
        key = f"{self._config.prefix}/{source_identity}/{content_hash}_{sanitize_filename(filename)}"

        @with_retry(self._retry, retryable_exceptions=(BotoCoreError, ClientError))
        async def _put() -> None:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._config.bucket,
                Key=key,
                Body=payload,
                ContentType="application/pdf",
            )

        await _put()
        uri = f"s3://{self._config.bucket}/{key}"
        logger.debug("pdf_uploaded", source_identity=source_identity, uri=uri, size=len(payload))
        return uri


def sanitize_filename(name: str) -> str:
    """Remove characters unsafe for S3 keys."""
    return re.sub(r"[^\w.\-]", "_", name, flags=re.ASCII)
