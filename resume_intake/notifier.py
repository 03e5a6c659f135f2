"""Fire-and-forget candidate notifications over Kafka."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from aiokafka import AIOKafkaProducer

from .config import KafkaConfig

logger = structlog.get_logger()

NEW_EMAIL_EVENT = "newEmail"


class EventPublisher:
    """Thin async wrapper around :class:`AIOKafkaProducer`.

    :meth:`publish` hands the message to the producer's buffer and
    returns; delivery failures are logged and never reach the caller.
    An empty ``bootstrap_servers`` disables publishing.
    """

    def __init__(self, config: KafkaConfig) -> None:
        self._config = config
        self._producer: AIOKafkaProducer | None = None
        self._pending: set[asyncio.Future] = set()

    @property
    def enabled(self) -> bool:
        return bool(self._config.bootstrap_servers)

    async def start(self) -> None:
        if not self.enabled:
            logger.info("event_publisher_disabled")
            return
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._config.bootstrap_servers,
            acks=self._config.producer_acks,
            compression_type=self._config.producer_compression,
        )
        await self._producer.start()
        logger.info("event_publisher_started", servers=self._config.bootstrap_servers)

    async def stop(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
            logger.info("event_publisher_stopped")

    async def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        """Queue ``{"event": event_name, "payload": payload}`` on the events topic."""
        if self._producer is None:
            logger.debug("event_not_published", event=event_name, reason="publisher_disabled")
            return
        value = json.dumps({"event": event_name, "payload": payload}, default=str).encode("utf-8")
        try:
            delivery = await self._producer.send(
                self._config.events_topic,
                value=value,
                key=event_name.encode("utf-8"),
            )
        except Exception as exc:
            logger.warning("event_publish_failed", event=event_name, error=str(exc))
            return
        self._pending.add(delivery)
        delivery.add_done_callback(self._on_delivery)

    def _on_delivery(self, delivery: asyncio.Future) -> None:
        self._pending.discard(delivery)
        if delivery.cancelled():
            return
        exc = delivery.exception()
        if exc is not None:
            logger.warning("event_delivery_failed", topic=self._config.events_topic, error=str(exc))
