import asyncio
import logging

from bookstore.database import AsyncSessionLocal
from bookstore.infrastructure.unit_of_work import UnitOfWork
from bookstore.infrastructure.http_clients import HTTPNotificationsClient
from bookstore.infrastructure.kafka_producer import KafkaProducerClient
from bookstore.application.process_outbox import ProcessOutboxEventsUseCase
from bookstore.config import settings

logger = logging.getLogger(__name__)


async def outbox_worker(use_case: ProcessOutboxEventsUseCase):
    """Polls the outbox and delivers order status notices"""
    logger.info("Outbox worker started")

    while True:
        try:
            processed = await use_case(limit=settings.OUTBOX_BATCH_SIZE)
            if processed:
                logger.info(f"Delivered {processed} outbox events")

            await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL_SECONDS)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Outbox worker error: {e}", exc_info=True)
            await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL_SECONDS * 3)


async def main():
    kafka_producer = KafkaProducerClient(settings.KAFKA_BOOTSTRAP_SERVERS, settings.ORDER_EVENTS_TOPIC)
    notifications_client = HTTPNotificationsClient(settings.NOTIFICATIONS_BASE_URL, settings.API_TOKEN)
    use_case = ProcessOutboxEventsUseCase(
        unit_of_work=UnitOfWork(AsyncSessionLocal),
        publisher=kafka_producer,
        notifications_client=notifications_client,
        max_attempts=settings.OUTBOX_MAX_ATTEMPTS
    )

    await kafka_producer.start()
    try:
        await outbox_worker(use_case)
    finally:
        await kafka_producer.stop()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    asyncio.run(main())
