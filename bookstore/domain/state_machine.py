from typing import Dict, Tuple

from bookstore.domain.models import OrderAction, OrderStatus
from bookstore.domain.exceptions import InvalidTransitionError


TRANSITIONS: Dict[Tuple[OrderStatus, OrderAction], OrderStatus] = {
    (OrderStatus.PENDING_CONFIRMATION, OrderAction.APPROVE): OrderStatus.CONFIRMED,
    (OrderStatus.PENDING_CONFIRMATION, OrderAction.REJECT): OrderStatus.CANCELLED,
    (OrderStatus.PENDING_CONFIRMATION, OrderAction.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.CONFIRMED, OrderAction.ASSIGN_DELIVERY): OrderStatus.OUT_FOR_DELIVERY,
    (OrderStatus.CONFIRMED, OrderAction.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.OUT_FOR_DELIVERY, OrderAction.CONFIRM_DELIVERED): OrderStatus.DELIVERED,
}

TERMINAL_STATUSES = frozenset(
    status for status in OrderStatus
    if not any(source == status for source, _ in TRANSITIONS)
)


def next_status(current: OrderStatus, action: OrderAction) -> OrderStatus:
    """Destination of (current, action); every pair outside the table is refused"""
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransitionError(current, action) from None


def allowed_actions(current: OrderStatus) -> list[OrderAction]:
    return [action for action in OrderAction if (current, action) in TRANSITIONS]
