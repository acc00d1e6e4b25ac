from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Optional

from bookstore.domain.models import DiscountType, Money, OrderAction, OrderStatus, PaymentStatus
from bookstore.domain.state_machine import allowed_actions
from bookstore.application.approve_order import ApprovalDecision
from bookstore.application.create_order import (
    MAX_ISBN_LENGTH, MAX_LINE_QUANTITY, MAX_NOTE_LENGTH, MAX_RECEIVER_NAME_LENGTH,
    MAX_RECEIVER_PHONE_LENGTH, MAX_SHIPPING_ADDRESS_LENGTH,
)


class OrderLineRequest(BaseModel):
    isbn: str = Field(..., min_length=1, max_length=MAX_ISBN_LENGTH)
    quantity: int = Field(..., gt=0, le=MAX_LINE_QUANTITY)


class CreateOrderRequest(BaseModel):
    customer_account_id: int
    lines: List[OrderLineRequest]
    receiver_name: str = Field(..., max_length=MAX_RECEIVER_NAME_LENGTH)
    receiver_phone: str = Field(..., max_length=MAX_RECEIVER_PHONE_LENGTH)
    shipping_address: str = Field(..., max_length=MAX_SHIPPING_ADDRESS_LENGTH)
    note: Optional[str] = Field(None, max_length=MAX_NOTE_LENGTH)


class ApprovalRequest(BaseModel):
    decision: ApprovalDecision
    approver_id: int


class DeliveryAssignmentRequest(BaseModel):
    employee_id: int
    assigner_id: int


class DeliveryConfirmationRequest(BaseModel):
    confirmer_id: int


class CancellationRequest(BaseModel):
    actor_id: int
    reason: Optional[str] = None


class PaymentCallbackRequest(BaseModel):
    order_id: str
    reference: str = Field(..., max_length=100)
    paid_at: datetime
    method: Optional[str] = Field(None, max_length=50)


class PriceChangeRequest(BaseModel):
    new_price: Money
    effective_from: date
    employee_id: int


class PromotionRequest(BaseModel):
    name: str = Field(..., max_length=200)
    discount_type: DiscountType
    discount_value: Money
    isbn: Optional[str] = Field(None, max_length=MAX_ISBN_LENGTH)
    category_id: Optional[int] = None
    start_date: date
    end_date: date
    active: bool = True


class OrderLineResponse(BaseModel):
    isbn: str
    quantity: int
    unit_price: Money
    line_total: Money


class OrderResponse(BaseModel):
    id: str
    customer_id: int
    status: OrderStatus
    placed_at: datetime
    receiver_name: str
    receiver_phone: str
    shipping_address: str
    note: Optional[str] = None
    delivery_at: Optional[datetime] = None
    approved_by: Optional[int] = None
    delivered_by: Optional[int] = None
    lines: List[OrderLineResponse]
    total_amount: Money
    total_quantity: int
    allowed_actions: List[OrderAction]
    updated_at: datetime

    @classmethod
    def from_domain(cls, order):
        return cls(
            id=order.id,
            customer_id=order.customer_id,
            status=order.status,
            placed_at=order.placed_at,
            receiver_name=order.receiver_name,
            receiver_phone=order.receiver_phone,
            shipping_address=order.shipping_address,
            note=order.note,
            delivery_at=order.delivery_at,
            approved_by=order.approved_by,
            delivered_by=order.delivered_by,
            lines=[
                OrderLineResponse(
                    isbn=line.isbn,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total
                )
                for line in order.lines
            ],
            total_amount=order.total_amount,
            total_quantity=order.total_quantity,
            allowed_actions=allowed_actions(order.status),
            updated_at=order.updated_at
        )


class OrderPageResponse(BaseModel):
    orders: List[OrderResponse]
    total_count: int
    page_number: int
    page_size: int
    total_pages: int

    @classmethod
    def from_page(cls, page):
        return cls(
            orders=[OrderResponse.from_domain(order) for order in page.orders],
            total_count=page.total_count,
            page_number=page.page_number,
            page_size=page.page_size,
            total_pages=page.total_pages
        )


class InvoiceResponse(BaseModel):
    invoice_number: str
    order_id: str
    sub_total: Money
    tax_amount: Money
    total_amount: Money
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, invoice):
        return cls(
            invoice_number=invoice.invoice_number,
            order_id=invoice.order_id,
            sub_total=invoice.sub_total,
            tax_amount=invoice.tax_amount,
            total_amount=invoice.total_amount,
            payment_status=invoice.payment_status,
            payment_method=invoice.payment_method,
            payment_reference=invoice.payment_reference,
            paid_at=invoice.paid_at,
            created_at=invoice.created_at
        )

