from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from bookstore.domain.models import Invoice, Order, PaymentConfirmation, PaymentStatus
from bookstore.domain.pricing import minor_unit


class InclusiveTaxPolicy:
    """Tax already contained in the line prices: tax = total * rate / (1 + rate)"""

    def __init__(self, rate: Decimal = Decimal("0"), decimal_places: int = 2):
        self.rate = Decimal(rate)
        self._quantum = minor_unit(decimal_places)

    def tax_for(self, total: Decimal) -> Decimal:
        if not self.rate:
            return Decimal("0").quantize(self._quantum)
        tax = total * self.rate / (Decimal("1") + self.rate)
        return tax.quantize(self._quantum, rounding=ROUND_HALF_UP)


def invoice_number_for(order: Order, prefix: str = "INV") -> str:
    """Deterministic per order: prefix, placement date and the order id"""
    return f"{prefix}-{order.placed_at:%Y%m%d}-{order.id.replace('-', '').upper()}"


def build_invoice(
    order: Order,
    tax_policy: InclusiveTaxPolicy,
    payment: Optional[PaymentConfirmation],
    now: datetime,
    prefix: str = "INV",
) -> Invoice:
    total = order.total_amount
    return Invoice(
        order_id=order.id,
        invoice_number=invoice_number_for(order, prefix),
        total_amount=total,
        tax_amount=tax_policy.tax_for(total),
        payment_status=PaymentStatus.PAID if payment else PaymentStatus.UNPAID,
        payment_method=payment.method if payment else None,
        payment_reference=payment.reference if payment else None,
        paid_at=payment.paid_at if payment else None,
        created_at=now,
        updated_at=now,
    )
