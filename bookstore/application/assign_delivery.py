import logging
from datetime import datetime
from typing import Callable

from bookstore.domain.models import Capability, Order, OrderAction, utcnow
from bookstore.domain.state_machine import next_status
from bookstore.domain.exceptions import NotFoundError, ValidationError
from bookstore.application.transitions import apply_transition, load_order_for_update, require_capability

logger = logging.getLogger(__name__)


class AssignDeliveryUseCase:
    def __init__(self, unit_of_work, clock: Callable[[], datetime] = utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, order_id: str, employee_id: int, assigner_id: int) -> Order:
        logger.info(f"Assigning order {order_id} to courier {employee_id} by employee {assigner_id}")

        async with self._uow() as uow:
            order = await load_order_for_update(uow, order_id)
            await require_capability(uow, assigner_id, Capability.APPROVE_ORDERS)
            # refuse on status before looking at the courier
            next_status(order.status, OrderAction.ASSIGN_DELIVERY)

            courier = await uow.employees.get_by_id(employee_id)
            if not courier:
                raise NotFoundError(f"Employee {employee_id} not found")
            if not courier.can(Capability.DELIVER_ORDERS):
                raise ValidationError(f"Employee {employee_id} is not eligible to deliver orders")

            order = await apply_transition(
                uow, order, OrderAction.ASSIGN_DELIVERY, self._clock(),
                actor_id=assigner_id, delivered_by=employee_id,
            )
            await uow.commit()

        return order
