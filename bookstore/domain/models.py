from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional
from pydantic import BaseModel, Field, PlainSerializer


# Exact decimal in memory, a string on the wire
Money = Annotated[Decimal, PlainSerializer(str, return_type=str, when_used="json")]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING_CONFIRMATION = "PendingConfirmation"
    CONFIRMED = "Confirmed"
    OUT_FOR_DELIVERY = "OutForDelivery"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class OrderAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN_DELIVERY = "assign_delivery"
    CONFIRM_DELIVERED = "confirm_delivered"
    CANCEL = "cancel"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


class DiscountType(str, Enum):
    PERCENT = "PERCENT"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class Capability(str, Enum):
    APPROVE_ORDERS = "APPROVE_ORDERS"
    DELIVER_ORDERS = "DELIVER_ORDERS"


class OrderLine(BaseModel):
    """Value Object: priced line, frozen at order creation"""
    model_config = {"frozen": True}

    isbn: str
    quantity: int
    unit_price: Money

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Order(BaseModel):
    """Aggregate root: an order always carries all of its lines"""
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
    lines: List[OrderLine]
    updated_at: datetime

    @property
    def total_amount(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0"))

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)


class Book(BaseModel):
    isbn: str
    title: str
    category_id: int
    active: bool = True


class Customer(BaseModel):
    id: int
    account_id: int
    full_name: str


class Area(BaseModel):
    name: str
    keywords: Optional[str] = None
    active: bool = True

    def matches(self, address: str) -> bool:
        """Any keyword (or the area name when none are set) occurs in the address"""
        haystack = address.lower()
        source = self.keywords or self.name
        keywords = [k.strip().lower() for k in source.split(",")]
        return any(k and k in haystack for k in keywords)


class Employee(BaseModel):
    id: int
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    capabilities: List[Capability] = Field(default_factory=list)
    areas: List[Area] = Field(default_factory=list)

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def serves(self, address: str) -> bool:
        return any(area.active and area.matches(address) for area in self.areas)


class PriceChange(BaseModel):
    """One record of the append-only per-isbn price timeline"""
    id: Optional[int] = None
    isbn: str
    effective_from: date
    old_price: Optional[Money] = None
    new_price: Money
    created_by: int
    created_at: datetime


class Promotion(BaseModel):
    id: Optional[int] = None
    name: str
    discount_type: DiscountType
    discount_value: Money
    isbn: Optional[str] = None
    category_id: Optional[int] = None
    start_date: date
    end_date: date
    active: bool = True
    created_at: datetime

    def applies_to(self, book: Book) -> bool:
        if self.isbn is not None:
            return self.isbn == book.isbn
        return self.category_id == book.category_id

    def is_running_on(self, day: date) -> bool:
        return self.active and self.start_date <= day <= self.end_date

    def discount_for(self, base_price: Decimal) -> Decimal:
        """Absolute discount on the base price, never more than the price itself"""
        if self.discount_type == DiscountType.PERCENT:
            discount = base_price * self.discount_value / Decimal("100")
        else:
            discount = self.discount_value
        return min(discount, base_price)


class DeliveryCandidate(BaseModel):
    employee_id: int
    name: str
    active_delivery_count: int
    region_match: bool
    score: int
    area_names: List[str] = Field(default_factory=list)


class Invoice(BaseModel):
    id: Optional[int] = None
    order_id: str
    invoice_number: str
    total_amount: Money
    tax_amount: Money
    payment_status: PaymentStatus
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def sub_total(self) -> Decimal:
        return self.total_amount - self.tax_amount


class PaymentConfirmation(BaseModel):
    """Effect of the payment webhook, kept until (and after) the invoice exists"""
    order_id: str
    reference: str
    method: Optional[str] = None
    paid_at: datetime
