import logging
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel

from bookstore.domain.models import Order, OrderLine, OrderStatus, utcnow
from bookstore.domain.exceptions import NotFoundError, ValidationError
from bookstore.application.events import record_status_change
from bookstore.application.pricing import LineItemPricer


logger = logging.getLogger(__name__)

# Column widths of the orders and order_lines tables
MAX_ISBN_LENGTH = 20
MAX_RECEIVER_NAME_LENGTH = 150
MAX_RECEIVER_PHONE_LENGTH = 30
MAX_SHIPPING_ADDRESS_LENGTH = 300
MAX_NOTE_LENGTH = 255

MAX_LINE_QUANTITY = 10_000

FIELD_LIMITS = {
    "receiver_name": MAX_RECEIVER_NAME_LENGTH,
    "receiver_phone": MAX_RECEIVER_PHONE_LENGTH,
    "shipping_address": MAX_SHIPPING_ADDRESS_LENGTH,
}


class OrderLineDTO(BaseModel):
    isbn: str
    quantity: int


class CreateOrderDTO(BaseModel):
    customer_account_id: int
    lines: List[OrderLineDTO]
    receiver_name: str
    receiver_phone: str
    shipping_address: str
    note: Optional[str] = None


class CreateOrderUseCase:
    def __init__(
        self,
        unit_of_work,
        decimal_places: int = 2,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._uow = unit_of_work
        self._decimal_places = decimal_places
        self._clock = clock

    async def __call__(self, order_data: CreateOrderDTO) -> Order:
        logger.info(f"Creating order for account {order_data.customer_account_id}, {len(order_data.lines)} lines")
        self._validate(order_data)

        async with self._uow() as uow:
            customer = await uow.customers.get_by_account_id(order_data.customer_account_id)
            if not customer:
                raise NotFoundError(f"Customer for account {order_data.customer_account_id} not found")

            isbns = [line.isbn for line in order_data.lines]
            books = await uow.books.get_many(isbns)
            unavailable = [isbn for isbn in isbns if isbn not in books or not books[isbn].active]
            if unavailable:
                raise NotFoundError(f"Books not found or not for sale: {', '.join(unavailable)}")

            # Unit prices are fixed here, as of placed_at, and never recomputed
            now = self._clock()
            pricer = LineItemPricer(uow, self._decimal_places)
            lines = []
            for line in order_data.lines:
                priced = await pricer.price(books[line.isbn], now.date())
                lines.append(OrderLine(isbn=line.isbn, quantity=line.quantity, unit_price=priced.unit_price))

            order = Order(
                id=str(uuid.uuid4()),
                customer_id=customer.id,
                status=OrderStatus.PENDING_CONFIRMATION,
                placed_at=now,
                receiver_name=order_data.receiver_name.strip(),
                receiver_phone=order_data.receiver_phone.strip(),
                shipping_address=order_data.shipping_address.strip(),
                note=order_data.note,
                lines=lines,
                updated_at=now,
            )
            await uow.orders.create(order)
            await record_status_change(uow, order, previous=None)
            await uow.commit()

        logger.info(f"Order created: {order.id}, total {order.total_amount}")
        return order

    def _validate(self, order_data: CreateOrderDTO) -> None:
        if not order_data.lines:
            raise ValidationError("Order must contain at least one line")

        seen = set()
        for line in order_data.lines:
            if line.quantity <= 0:
                raise ValidationError(f"Quantity for {line.isbn} must be positive, got {line.quantity}")
            if line.quantity > MAX_LINE_QUANTITY:
                raise ValidationError(f"Quantity for {line.isbn} exceeds {MAX_LINE_QUANTITY}")
            if len(line.isbn) > MAX_ISBN_LENGTH:
                raise ValidationError(f"isbn longer than {MAX_ISBN_LENGTH} characters")
            if line.isbn in seen:
                raise ValidationError(f"Book {line.isbn} appears more than once")
            seen.add(line.isbn)

        for field, max_length in FIELD_LIMITS.items():
            value = getattr(order_data, field).strip()
            if not value:
                raise ValidationError(f"{field} is required")
            if len(value) > max_length:
                raise ValidationError(f"{field} longer than {max_length} characters")

        if order_data.note and len(order_data.note) > MAX_NOTE_LENGTH:
            raise ValidationError(f"note longer than {MAX_NOTE_LENGTH} characters")
