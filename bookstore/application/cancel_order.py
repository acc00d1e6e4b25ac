import logging
from datetime import datetime
from typing import Callable, Optional

from bookstore.domain.models import Capability, Order, OrderAction, utcnow
from bookstore.domain.exceptions import InvalidTransitionError
from bookstore.application.transitions import apply_transition, load_order_for_update, require_capability

logger = logging.getLogger(__name__)


class CancelOrderUseCase:
    """Cancellation outside the approval step; disabled unless configured"""

    def __init__(self, unit_of_work, enabled: bool = False, clock: Callable[[], datetime] = utcnow):
        self._uow = unit_of_work
        self._enabled = enabled
        self._clock = clock

    async def __call__(self, order_id: str, actor_id: int, reason: Optional[str] = None) -> Order:
        logger.info(f"Cancelling order {order_id} by employee {actor_id}: {reason}")

        async with self._uow() as uow:
            order = await load_order_for_update(uow, order_id)
            if not self._enabled:
                raise InvalidTransitionError(
                    order.status, OrderAction.CANCEL,
                    "Order cancellation is disabled; reject the order during approval instead",
                )
            await require_capability(uow, actor_id, Capability.APPROVE_ORDERS)

            order = await apply_transition(
                uow, order, OrderAction.CANCEL, self._clock(),
                actor_id=actor_id, reason=reason,
            )
            await uow.commit()

        return order
