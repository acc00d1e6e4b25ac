import math
from typing import List

from pydantic import BaseModel

from bookstore.domain.models import Order
from bookstore.domain.exceptions import NotFoundError, ValidationError
from bookstore.application.interfaces import OrderCriteria

MAX_PAGE_SIZE = 100


class OrderPage(BaseModel):
    orders: List[Order]
    total_count: int
    page_number: int
    page_size: int
    total_pages: int


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise NotFoundError(f"Order {order_id} not found")
            return order


class ListOrdersUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, criteria: OrderCriteria, page_number: int = 1, page_size: int = 10) -> OrderPage:
        if page_number < 1:
            raise ValidationError("page_number must be at least 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
        if criteria.placed_from and criteria.placed_to and criteria.placed_from > criteria.placed_to:
            raise ValidationError("placed_from must not be after placed_to")

        async with self._uow() as uow:
            orders, total = await uow.orders.search(criteria, (page_number - 1) * page_size, page_size)

        return OrderPage(
            orders=orders,
            total_count=total,
            page_number=page_number,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
        )
