from typing import Optional

from bookstore.domain.models import Order, OrderStatus
from bookstore.application.interfaces import UnitOfWork

ORDER_STATUS_CHANGED = "order.status_changed"

STATUS_MESSAGES = {
    OrderStatus.PENDING_CONFIRMATION: "Your order has been placed and is awaiting confirmation",
    OrderStatus.CONFIRMED: "Your order has been confirmed",
    OrderStatus.OUT_FOR_DELIVERY: "Your order is out for delivery",
    OrderStatus.DELIVERED: "Your order has been delivered",
    OrderStatus.CANCELLED: "Your order has been cancelled",
}


async def record_status_change(
    uow: UnitOfWork,
    order: Order,
    previous: Optional[OrderStatus],
    actor_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> str:
    """Queues the status notice in the same unit of work as the transition"""
    return await uow.outbox.create(
        event_type=ORDER_STATUS_CHANGED,
        event_data={
            "order_id": order.id,
            "customer_id": order.customer_id,
            "previous_status": previous.value if previous else None,
            "status": order.status.value,
            "actor_id": actor_id,
            "reason": reason,
            "message": STATUS_MESSAGES[order.status],
            "idempotency_key": f"{order.id}_{order.status.value}",
        },
        order_id=order.id,
    )
