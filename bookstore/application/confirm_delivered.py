import logging
from datetime import datetime
from typing import Callable

from bookstore.domain.models import Capability, Order, OrderAction, utcnow
from bookstore.domain.state_machine import next_status
from bookstore.domain.exceptions import UnauthorizedError
from bookstore.application.generate_invoice import InvoiceGenerator
from bookstore.application.transitions import apply_transition, load_order_for_update

logger = logging.getLogger(__name__)


class ConfirmDeliveredUseCase:
    def __init__(
        self,
        unit_of_work,
        invoice_generator: InvoiceGenerator,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._uow = unit_of_work
        self._invoices = invoice_generator
        self._clock = clock

    async def __call__(self, order_id: str, confirmer_id: int) -> Order:
        logger.info(f"Confirming delivery of order {order_id} by employee {confirmer_id}")

        async with self._uow() as uow:
            order = await load_order_for_update(uow, order_id)
            next_status(order.status, OrderAction.CONFIRM_DELIVERED)

            if confirmer_id != order.delivered_by:
                confirmer = await uow.employees.get_by_id(confirmer_id)
                if not confirmer or not confirmer.can(Capability.APPROVE_ORDERS):
                    raise UnauthorizedError(
                        f"Employee {confirmer_id} is not the courier of order {order_id}"
                    )

            now = self._clock()
            order = await apply_transition(
                uow, order, OrderAction.CONFIRM_DELIVERED, now,
                actor_id=confirmer_id, delivery_at=now,
            )
            # same unit of work: the transition and the invoice commit together
            await self._invoices.generate_for_order(uow, order)
            await uow.commit()

        return order
