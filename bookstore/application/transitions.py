import logging
from datetime import datetime
from typing import Optional

from bookstore.domain.models import Capability, Employee, Order, OrderAction
from bookstore.domain.state_machine import next_status
from bookstore.domain.exceptions import ConflictError, NotFoundError, UnauthorizedError
from bookstore.application.events import record_status_change
from bookstore.application.interfaces import UnitOfWork

logger = logging.getLogger(__name__)


async def load_order_for_update(uow: UnitOfWork, order_id: str) -> Order:
    order = await uow.orders.get_by_id(order_id, for_update=True)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


async def require_capability(uow: UnitOfWork, employee_id: int, capability: Capability) -> Employee:
    employee = await uow.employees.get_by_id(employee_id)
    if not employee or not employee.can(capability):
        raise UnauthorizedError(f"Employee {employee_id} may not {capability.value.lower().replace('_', ' ')}")
    return employee


async def apply_transition(
    uow: UnitOfWork,
    order: Order,
    action: OrderAction,
    now: datetime,
    actor_id: Optional[int] = None,
    reason: Optional[str] = None,
    **changes,
) -> Order:
    """Moves the order along the transition table with a status-guarded write.

    The write only lands while the stored status still equals the one read, so
    of two racing callers exactly one wins; the other gets a ConflictError.
    """
    new_status = next_status(order.status, action)
    applied = await uow.orders.transition(order.id, order.status, new_status, updated_at=now, **changes)
    if not applied:
        raise ConflictError(f"Order {order.id} changed concurrently, {action.value} not applied")

    updated = order.model_copy(update={"status": new_status, "updated_at": now, **changes})
    await record_status_change(uow, updated, previous=order.status, actor_id=actor_id, reason=reason)
    logger.info(f"Order {order.id}: {order.status.value} -> {new_status.value} ({action.value})")
    return updated
