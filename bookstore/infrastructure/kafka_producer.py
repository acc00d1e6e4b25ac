import json
import logging
from typing import Optional
from aiokafka import AIOKafkaProducer

from bookstore.application.interfaces import EventPublisher

logger = logging.getLogger(__name__)


class KafkaProducerClient(EventPublisher):
    def __init__(self, bootstrap_servers: str, topic: str):
        self._bootstrap_servers = bootstrap_servers
        self._producer: Optional[AIOKafkaProducer] = None
        self._topic = topic

    async def start(self):
        if not self._producer:
            self._producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers
            )
            await self._producer.start()
            logger.info(f"Kafka producer started, topic {self._topic}")

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def publish(self, event_type: str, key: str, payload: dict) -> bool:
        if not self._producer:
            logger.error("Kafka producer not started")
            return False

        try:
            event = {"event_type": event_type, **payload}
            await self._producer.send_and_wait(
                topic=self._topic,
                key=key.encode(),
                value=json.dumps(event).encode()
            )
            logger.info(f"Published {event_type} for order {key}")
            return True

        except Exception as e:
            logger.error(f"Failed to publish {event_type} for order {key}: {e}")
            return False
