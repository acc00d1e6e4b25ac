import logging
from datetime import datetime
from typing import Callable

from bookstore.domain.models import Invoice, Order, OrderAction, OrderStatus, utcnow
from bookstore.domain.invoicing import InclusiveTaxPolicy, build_invoice
from bookstore.domain.exceptions import InvalidTransitionError, NotFoundError
from bookstore.application.interfaces import UnitOfWork

logger = logging.getLogger(__name__)


class InvoiceGenerator:
    """Materializes the single invoice of an order; repeated calls return it unchanged"""

    def __init__(
        self,
        tax_policy: InclusiveTaxPolicy,
        number_prefix: str = "INV",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._tax_policy = tax_policy
        self._number_prefix = number_prefix
        self._clock = clock

    async def generate_for_order(self, uow: UnitOfWork, order: Order) -> Invoice:
        existing = await uow.invoices.get_by_order_id(order.id)
        if existing:
            logger.info(f"Invoice for order {order.id} already exists: {existing.invoice_number}")
            return existing

        payment = await uow.payments.get_by_order_id(order.id)
        invoice = build_invoice(order, self._tax_policy, payment, self._clock(), self._number_prefix)
        stored = await uow.invoices.create(invoice)
        logger.info(
            f"Invoice {stored.invoice_number} for order {order.id}: "
            f"total {stored.total_amount}, tax {stored.tax_amount}, {stored.payment_status.value}"
        )
        return stored


class GenerateInvoiceUseCase:
    def __init__(self, unit_of_work, invoice_generator: InvoiceGenerator):
        self._uow = unit_of_work
        self._generator = invoice_generator

    async def __call__(self, order_id: str) -> Invoice:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id, for_update=True)
            if not order:
                raise NotFoundError(f"Order {order_id} not found")

            if order.status != OrderStatus.DELIVERED:
                paid = await uow.payments.get_by_order_id(order_id)
                if not paid or order.status == OrderStatus.CANCELLED:
                    raise InvalidTransitionError(
                        order.status, OrderAction.CONFIRM_DELIVERED,
                        f"Order {order_id} is neither delivered nor paid, no invoice can be issued",
                    )

            invoice = await self._generator.generate_for_order(uow, order)
            await uow.commit()

        return invoice


class GetInvoiceUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str) -> Invoice:
        async with self._uow() as uow:
            invoice = await uow.invoices.get_by_order_id(order_id)
            if not invoice:
                raise NotFoundError(f"No invoice for order {order_id}")
            return invoice
