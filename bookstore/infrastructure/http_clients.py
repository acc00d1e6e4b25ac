import httpx
import logging
import asyncio

from bookstore.application.interfaces import NotificationsService

logger = logging.getLogger(__name__)


class HTTPNotificationsClient(NotificationsService):
    def __init__(self, base_url: str, api_token: str, max_retries: int = 3, retry_delay: float = 1.0):
        self._base_url = base_url
        self._api_token = api_token
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    async def send(self, message: str, reference_id: str, idempotency_key: str, user_id: str) -> bool:
        """Sends a customer notice, retrying; False once retries are exhausted"""
        for attempt in range(self._max_retries):
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        f"{self._base_url}/api/notifications",
                        json={
                            "message": message,
                            "reference_id": reference_id,
                            "idempotency_key": idempotency_key,
                            "user_id": user_id
                        },
                        headers={"X-API-Key": self._api_token},
                        timeout=10.0
                    )

                    # 409: already delivered under this idempotency key
                    if response.status_code in (200, 201, 409):
                        logger.info(f"Notification {idempotency_key} sent (attempt {attempt + 1})")
                        return True
                    logger.warning(f"Notification {idempotency_key} returned status {response.status_code}")

            except httpx.HTTPError as e:
                logger.warning(
                    f"Notification {idempotency_key} failed (attempt {attempt + 1}/{self._max_retries}): {e}"
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._retry_delay)

        logger.error(f"Notification {idempotency_key} not sent after {self._max_retries} attempts")
        return False
