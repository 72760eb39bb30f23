"""Kafka producer for click events."""

import json
import logging

from aiokafka import AIOKafkaProducer

from shortener.schemas import ClickEvent, ClickFact

__all__ = ["ClickEventPublisher"]

logger = logging.getLogger("urlshortener.kafka")


class ClickEventPublisher:
    def __init__(self, bootstrap_servers: str, topic: str) -> None:
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._producer: AIOKafkaProducer | None = None

    @property
    def started(self) -> bool:
        return self._producer is not None

    async def start(self) -> None:
        if self._producer is not None:
            return

        producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
        )
        try:
            await producer.start()
            self._producer = producer
        except Exception as exc:
            logger.warning(f"Kafka unavailable, click events will not be streamed: {exc}")
            await producer.stop()
            self._producer = None

    async def stop(self) -> None:
        if self._producer is None:
            return
        await self._producer.stop()
        self._producer = None

    async def publish(self, short_code: str, fact: ClickFact) -> bool:
        assert isinstance(short_code, str) and short_code, f"short_code must be non-empty str, got {short_code!r}"

        if self._producer is None:
            return False

        payload = ClickEvent(short_code=short_code, delta=1, occurred_at=fact.occurred_at).model_dump(mode="json")
        await self._producer.send_and_wait(
            self._topic,
            payload,
            key=short_code.encode("utf-8"),
        )
        return True
