import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from bookstore.domain.models import Capability, Order, OrderAction, utcnow
from bookstore.application.transitions import apply_transition, load_order_for_update, require_capability

logger = logging.getLogger(__name__)


class ApprovalDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ApproveOrderUseCase:
    def __init__(self, unit_of_work, clock: Callable[[], datetime] = utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, order_id: str, decision: ApprovalDecision, approver_id: int) -> Order:
        logger.info(f"Approval decision {decision.value} for order {order_id} by employee {approver_id}")

        async with self._uow() as uow:
            order = await load_order_for_update(uow, order_id)
            await require_capability(uow, approver_id, Capability.APPROVE_ORDERS)

            if decision == ApprovalDecision.APPROVE:
                order = await apply_transition(
                    uow, order, OrderAction.APPROVE, self._clock(),
                    actor_id=approver_id, approved_by=approver_id,
                )
            else:
                order = await apply_transition(
                    uow, order, OrderAction.REJECT, self._clock(),
                    actor_id=approver_id, reason="Rejected on approval",
                )
            await uow.commit()

        return order
