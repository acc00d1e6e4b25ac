import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from bookstore.domain.models import Invoice, OrderStatus, PaymentConfirmation, PaymentStatus
from bookstore.domain.exceptions import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class PaymentConfirmationDTO(BaseModel):
    order_id: str
    reference: str
    paid_at: datetime
    method: Optional[str] = None


class MarkInvoicePaidUseCase:
    """Applies the effect of a confirmed payment: order X paid with reference R at T.

    Before delivery there is no invoice yet; the confirmation is kept and the
    invoice starts as PAID once generated. Replays with the same reference are
    no-ops, a different reference for a paid order is a conflict.
    """

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, dto: PaymentConfirmationDTO) -> Optional[Invoice]:
        logger.info(f"Payment confirmation for order {dto.order_id}, reference {dto.reference}")
        if not dto.reference.strip():
            raise ValidationError("Payment reference is required")

        async with self._uow() as uow:
            order = await uow.orders.get_by_id(dto.order_id, for_update=True)
            if not order:
                raise NotFoundError(f"Order {dto.order_id} not found")
            if order.status == OrderStatus.CANCELLED:
                logger.warning(
                    f"Payment {dto.reference} received for cancelled order {dto.order_id}, recorded for refund"
                )

            payment = await uow.payments.get_by_order_id(dto.order_id)
            if payment and payment.reference != dto.reference:
                raise ConflictError(
                    f"Order {dto.order_id} already paid with reference {payment.reference}"
                )
            if not payment:
                await uow.payments.create(
                    PaymentConfirmation(
                        order_id=dto.order_id,
                        reference=dto.reference,
                        method=dto.method,
                        paid_at=dto.paid_at,
                    )
                )

            invoice = await uow.invoices.get_by_order_id(dto.order_id)
            if invoice and invoice.payment_status != PaymentStatus.PAID:
                await uow.invoices.mark_paid(dto.order_id, dto.method, dto.reference, dto.paid_at)
                invoice = await uow.invoices.get_by_order_id(dto.order_id)
                logger.info(f"Invoice {invoice.invoice_number} marked PAID")
            elif not invoice:
                logger.info(f"Order {dto.order_id} has no invoice yet, payment recorded")

            await uow.commit()

        return invoice
