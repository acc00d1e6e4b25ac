from sqlalchemy import (
    Table, Column, String, Integer, Numeric, Boolean, Date, Enum, DateTime, JSON,
    MetaData, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.sql import func

from bookstore.domain.models import DiscountType, OrderStatus, PaymentStatus

metadata = MetaData()


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("customer_id", Integer, nullable=False, index=True),
    Column("status", Enum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.PENDING_CONFIRMATION),
    Column("placed_at", DateTime(timezone=True), nullable=False),
    Column("receiver_name", String(150), nullable=False),
    Column("receiver_phone", String(30), nullable=False),
    Column("shipping_address", String(300), nullable=False),
    Column("note", String(255), nullable=True),
    Column("delivery_at", DateTime(timezone=True), nullable=True),
    Column("approved_by", Integer, nullable=True),
    Column("delivered_by", Integer, nullable=True, index=True),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
)


order_lines_tbl = Table(
    "order_lines",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(36), ForeignKey("orders.id"), nullable=False, index=True),
    Column("position", Integer, nullable=False),
    Column("isbn", String(20), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Numeric(12, 2), nullable=False),
    UniqueConstraint("order_id", "position", name="uq_order_lines_position"),
)


books_tbl = Table(
    "books",
    metadata,
    Column("isbn", String(20), primary_key=True),
    Column("title", String(300), nullable=False),
    Column("category_id", Integer, nullable=False),
    Column("active", Boolean, nullable=False, default=True),
)


customers_tbl = Table(
    "customers",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("account_id", Integer, unique=True, nullable=False),
    Column("full_name", String(200), nullable=False),
)


employees_tbl = Table(
    "employees",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("full_name", String(200), nullable=False),
    Column("phone", String(30), nullable=True),
    Column("email", String(191), nullable=True),
    Column("capabilities", JSON, nullable=False, default=list),
)


employee_areas_tbl = Table(
    "employee_areas",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("employee_id", Integer, ForeignKey("employees.id"), nullable=False, index=True),
    Column("name", String(150), nullable=False),
    Column("keywords", String(300), nullable=True),
    Column("is_active", Boolean, nullable=False, default=True),
)


price_changes_tbl = Table(
    "price_changes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("isbn", String(20), ForeignKey("books.isbn"), nullable=False),
    Column("effective_from", Date, nullable=False),
    Column("old_price", Numeric(12, 2), nullable=True),
    Column("new_price", Numeric(12, 2), nullable=False),
    Column("created_by", Integer, nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Index("ix_price_changes_timeline", "isbn", "effective_from", "id"),
)


promotions_tbl = Table(
    "promotions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(200), nullable=False),
    Column("discount_type", Enum(DiscountType, name="discount_type"), nullable=False),
    Column("discount_value", Numeric(12, 2), nullable=False),
    Column("isbn", String(20), nullable=True, index=True),
    Column("category_id", Integer, nullable=True, index=True),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=False),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


invoices_tbl = Table(
    "invoices",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(36), ForeignKey("orders.id"), unique=True, nullable=False),
    Column("invoice_number", String(64), unique=True, nullable=False),
    Column("total_amount", Numeric(14, 2), nullable=False),
    Column("tax_amount", Numeric(14, 2), nullable=False),
    Column("payment_status", Enum(PaymentStatus, name="payment_status"), nullable=False),
    Column("payment_method", String(50), nullable=True),
    Column("payment_reference", String(100), nullable=True),
    Column("paid_at", DateTime(timezone=True), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)


payment_confirmations_tbl = Table(
    "payment_confirmations",
    metadata,
    Column("order_id", String(36), ForeignKey("orders.id"), primary_key=True),
    Column("reference", String(100), nullable=False),
    Column("method", String(50), nullable=True),
    Column("paid_at", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
)


OUTBOX_PENDING = "pending"
OUTBOX_PUBLISHED = "published"
OUTBOX_FAILED = "failed"

outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("event_type", String(100), nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String(36), nullable=False, index=True),
    Column("status", String(20), nullable=False, default=OUTBOX_PENDING),
    Column("attempts", Integer, nullable=False, default=0),
    Column("kafka_published", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("published_at", DateTime(timezone=True), nullable=True),
    Index("ix_outbox_events_pending", "status", "created_at"),
)
