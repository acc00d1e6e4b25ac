from typing import List

from bookstore.domain.models import Capability, DeliveryCandidate
from bookstore.domain.ranking import rank_delivery_candidates
from bookstore.domain.exceptions import NotFoundError


class GetDeliveryCandidatesUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str) -> List[DeliveryCandidate]:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise NotFoundError(f"Order {order_id} not found")

            couriers = await uow.employees.list_with_capability(Capability.DELIVER_ORDERS)
            active = await uow.orders.count_active_deliveries()
            return rank_delivery_candidates(order, couriers, active)
