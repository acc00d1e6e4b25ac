import logging
import json

from bookstore.application.events import ORDER_STATUS_CHANGED
from bookstore.application.interfaces import EventPublisher, NotificationsService

logger = logging.getLogger(__name__)


class ProcessOutboxEventsUseCase:
    """Delivers queued status notices; a failed delivery leaves the event pending.

    The Kafka publish and the customer notice are tracked apart, so a retry
    after a failed notice does not publish to Kafka again. An event that keeps
    failing is marked failed after max_attempts and is no longer polled.
    """

    def __init__(
        self,
        unit_of_work,
        publisher: EventPublisher,
        notifications_client: NotificationsService,
        max_attempts: int = 10,
    ):
        self._uow = unit_of_work
        self._publisher = publisher
        self._notifications = notifications_client
        self._max_attempts = max_attempts

    async def __call__(self, limit: int = 5) -> int:
        """Returns the number of events published"""
        published = 0

        async with self._uow() as uow:
            pending = await uow.outbox.get_pending(limit=limit)

            for event in pending:
                try:
                    event_data = event["event_data"]
                    if isinstance(event_data, str):
                        event_data = json.loads(event_data)

                    if event["event_type"] != ORDER_STATUS_CHANGED:
                        logger.warning(f"Unknown outbox event type {event['event_type']}, skipped")
                        continue

                    sent = event["kafka_published"]
                    if not sent:
                        sent = await self._publisher.publish(
                            event_type=event["event_type"],
                            key=event["order_id"],
                            payload=event_data,
                        )
                        if sent:
                            await uow.outbox.mark_kafka_published(event["id"])

                    notified = await self._notifications.send(
                        message=event_data["message"],
                        reference_id=event["order_id"],
                        idempotency_key=event_data["idempotency_key"],
                        user_id=str(event_data["customer_id"]),
                    )
                    if sent and notified:
                        await uow.outbox.mark_as_published(event["id"])
                        published += 1
                        logger.info(f"Published {event['event_type']} event {event['id']}")
                    else:
                        logger.info(f"Event {event['id']} left pending (kafka: {sent}, notification: {notified})")
                        await self._record_failure(uow, event)
                except Exception as e:
                    logger.error(f"Error processing outbox event {event['id']}: {e}")
                    await self._record_failure(uow, event)

            await uow.commit()

        return published

    async def _record_failure(self, uow, event: dict) -> None:
        if await uow.outbox.record_failed_attempt(event["id"], self._max_attempts):
            logger.error(f"Outbox event {event['id']} failed {self._max_attempts} times, giving up")
