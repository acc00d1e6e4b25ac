import asyncio
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import event, func, insert, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from bookstore.domain.models import (
    Capability, DiscountType, Invoice, Order, OrderLine, OrderStatus, PaymentConfirmation,
    PaymentStatus, PriceChange, Promotion,
)
from bookstore.domain.exceptions import ConflictError
from bookstore.domain.invoicing import InclusiveTaxPolicy
from bookstore.application.interfaces import OrderCriteria
from bookstore.application.results import run_operation
from bookstore.application.create_order import CreateOrderDTO, CreateOrderUseCase, OrderLineDTO
from bookstore.application.approve_order import ApprovalDecision, ApproveOrderUseCase
from bookstore.application.assign_delivery import AssignDeliveryUseCase
from bookstore.application.confirm_delivered import ConfirmDeliveredUseCase
from bookstore.application.generate_invoice import InvoiceGenerator
from bookstore.infrastructure.db_schema import (
    books_tbl, customers_tbl, employee_areas_tbl, employees_tbl, invoices_tbl, metadata,
)
from bookstore.infrastructure.unit_of_work import UnitOfWork

PLACED_AT = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


async def seed(engine):
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
        await conn.execute(insert(books_tbl), [
            {"isbn": "111", "title": "Dune", "category_id": 1, "active": True},
            {"isbn": "222", "title": "Emma", "category_id": 2, "active": True},
        ])
        await conn.execute(insert(customers_tbl).values(id=7, account_id=70, full_name="Ann Reader"))
        await conn.execute(insert(employees_tbl), [
            {"id": 1, "full_name": "Mia Manager", "capabilities": ["APPROVE_ORDERS"]},
            {"id": 2, "full_name": "Nils North", "capabilities": ["DELIVER_ORDERS"]},
            {"id": 3, "full_name": "Sara South", "capabilities": ["DELIVER_ORDERS", "APPROVE_ORDERS"]},
        ])
        await conn.execute(insert(employee_areas_tbl), [
            {"employee_id": 2, "name": "North", "keywords": "north,harbor", "is_active": True},
            {"employee_id": 2, "name": "Old town", "keywords": None, "is_active": False},
        ])


@pytest.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await seed(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def locking_session_factory(tmp_path):
    """One connection per session; a transaction holds the write lock from its first statement"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    await seed(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory)


def make_order(receiver_name="Ann Reader", placed_at=PLACED_AT, status=OrderStatus.PENDING_CONFIRMATION):
    return Order(
        id=str(uuid.uuid4()),
        customer_id=7,
        status=status,
        placed_at=placed_at,
        receiver_name=receiver_name,
        receiver_phone="+31 600 000 000",
        shipping_address="12 North Street",
        lines=[
            OrderLine(isbn="222", quantity=1, unit_price=Decimal("50.00")),
            OrderLine(isbn="111", quantity=2, unit_price=Decimal("120.00")),
        ],
        updated_at=placed_at,
    )


async def save(uow, order):
    async with uow() as tx:
        await tx.orders.create(order)
        await tx.commit()


async def test_order_round_trip_keeps_line_order(uow):
    order = make_order()
    await save(uow, order)

    async with uow() as tx:
        loaded = await tx.orders.get_by_id(order.id)

    assert loaded.status == OrderStatus.PENDING_CONFIRMATION
    assert loaded.lines == order.lines
    assert loaded.total_amount == Decimal("290.00")


async def test_uncommitted_work_is_discarded(uow):
    order = make_order()
    async with uow() as tx:
        await tx.orders.create(order)

    async with uow() as tx:
        assert await tx.orders.get_by_id(order.id) is None


async def test_guarded_transition(uow):
    order = make_order()
    await save(uow, order)

    async with uow() as tx:
        assert await tx.orders.transition(order.id, OrderStatus.PENDING_CONFIRMATION, OrderStatus.CONFIRMED, approved_by=1)
        assert not await tx.orders.transition(order.id, OrderStatus.PENDING_CONFIRMATION, OrderStatus.CANCELLED)
        await tx.commit()

    async with uow() as tx:
        loaded = await tx.orders.get_by_id(order.id, for_update=True)
    assert loaded.status == OrderStatus.CONFIRMED
    assert loaded.approved_by == 1


async def test_search_filters_and_counts(uow):
    ann = make_order()
    bob = make_order(receiver_name="Bob Buyer", placed_at=datetime(2024, 1, 12, tzinfo=timezone.utc))
    await save(uow, ann)
    await save(uow, bob)

    async with uow() as tx:
        orders, total = await tx.orders.search(OrderCriteria(), 0, 10)
        assert total == 2
        assert [o.id for o in orders] == [bob.id, ann.id]

        orders, total = await tx.orders.search(OrderCriteria(keyword="BOB"), 0, 10)
        assert [o.id for o in orders] == [bob.id]

        orders, total = await tx.orders.search(OrderCriteria(customer_id=7), 1, 1)
        assert total == 2
        assert [o.id for o in orders] == [ann.id]
        assert len(orders[0].lines) == 2


async def test_count_active_deliveries(uow):
    for courier in (2, 2, 3):
        order = make_order(status=OrderStatus.OUT_FOR_DELIVERY).model_copy(update={"delivered_by": courier})
        await save(uow, order)
    await save(uow, make_order(status=OrderStatus.DELIVERED).model_copy(update={"delivered_by": 3}))

    async with uow() as tx:
        assert await tx.orders.count_active_deliveries() == {2: 2, 3: 1}


async def test_employees_with_areas(uow):
    async with uow() as tx:
        couriers = await tx.employees.list_with_capability(Capability.DELIVER_ORDERS)
        manager = await tx.employees.get_by_id(1)

    assert [c.id for c in couriers] == [2, 3]
    assert [a.name for a in couriers[0].areas] == ["North", "Old town"]
    assert couriers[0].serves("1 Harbor Lane")
    assert not couriers[0].serves("5 Old town square")
    assert manager.can(Capability.APPROVE_ORDERS)


async def test_books_and_customers(uow):
    async with uow() as tx:
        books = await tx.books.get_many(["111", "999"])
        customer = await tx.customers.get_by_account_id(70)

    assert list(books) == ["111"]
    assert books["111"].title == "Dune"
    assert customer.id == 7


async def test_price_timeline(uow):
    async with uow() as tx:
        for effective_from, price in [(date(2024, 1, 1), "120"), (date(2023, 1, 1), "100"), (date(2024, 1, 1), "125")]:
            await tx.price_changes.create(PriceChange(
                isbn="111", effective_from=effective_from, new_price=Decimal(price),
                created_by=1, created_at=PLACED_AT,
            ))
        await tx.commit()

    async with uow() as tx:
        current = await tx.price_changes.get_effective("111", date(2024, 1, 10))
        earlier = await tx.price_changes.get_effective("111", date(2023, 6, 1))
        none = await tx.price_changes.get_effective("111", date(2022, 1, 1))
        history = await tx.price_changes.list_for_isbn("111")

    assert current.new_price == Decimal("125")
    assert earlier.new_price == Decimal("100")
    assert none is None
    assert [c.new_price for c in history] == [Decimal("100"), Decimal("120"), Decimal("125")]


async def test_running_promotions(uow):
    def promo(name, **scope):
        return Promotion(
            name=name, discount_type=DiscountType.PERCENT, discount_value=Decimal("10"),
            start_date=date(2024, 1, 1), end_date=date(2024, 1, 31), created_at=PLACED_AT, **scope,
        )

    async with uow() as tx:
        by_isbn = await tx.promotions.create(promo("isbn", isbn="111"))
        by_category = await tx.promotions.create(promo("category", category_id=1))
        await tx.promotions.create(promo("other category", category_id=2))
        await tx.promotions.create(promo("other isbn with same category", isbn="222", category_id=1))
        await tx.promotions.create(promo("inactive", isbn="111", active=False))
        await tx.commit()

    async with uow() as tx:
        book = await tx.books.get_by_isbn("111")
        running = await tx.promotions.list_running_for_book(book, date(2024, 1, 10))
        later = await tx.promotions.list_running_for_book(book, date(2024, 2, 1))

    assert [p.id for p in running] == [by_isbn.id, by_category.id]
    assert later == []


async def test_invoice_is_unique_per_order(uow):
    order = make_order()
    await save(uow, order)
    invoice = Invoice(
        order_id=order.id, invoice_number="INV-1", total_amount=Decimal("290.00"),
        tax_amount=Decimal("0.00"), payment_status=PaymentStatus.UNPAID,
        created_at=PLACED_AT, updated_at=PLACED_AT,
    )

    async with uow() as tx:
        stored = await tx.invoices.create(invoice)
        await tx.commit()
    assert stored.id is not None

    with pytest.raises(ConflictError):
        async with uow() as tx:
            await tx.invoices.create(invoice.model_copy(update={"invoice_number": "INV-2"}))

    async with uow() as tx:
        await tx.invoices.mark_paid(order.id, "card", "PAY-1", PLACED_AT)
        await tx.commit()

    async with uow() as tx:
        paid = await tx.invoices.get_by_order_id(order.id)
    assert paid.invoice_number == "INV-1"
    assert paid.payment_status == PaymentStatus.PAID
    assert paid.payment_reference == "PAY-1"


async def test_payments_and_outbox(uow):
    order = make_order()
    await save(uow, order)

    async with uow() as tx:
        await tx.payments.create(PaymentConfirmation(order_id=order.id, reference="PAY-1", paid_at=PLACED_AT))
        event_id = await tx.outbox.create("order.status_changed", {"status": "Confirmed"}, order.id)
        await tx.commit()

    async with uow() as tx:
        payment = await tx.payments.get_by_order_id(order.id)
        pending = await tx.outbox.get_pending()
        await tx.outbox.mark_as_published(event_id)
        await tx.commit()

    assert payment.reference == "PAY-1"
    assert pending == [{
        "id": event_id,
        "event_type": "order.status_changed",
        "event_data": {"status": "Confirmed"},
        "order_id": order.id,
        "kafka_published": False,
        "attempts": 0,
    }]

    async with uow() as tx:
        assert await tx.outbox.get_pending() == []


async def test_outbox_gives_up_after_max_attempts(uow):
    order = make_order()
    await save(uow, order)

    async with uow() as tx:
        event_id = await tx.outbox.create("order.status_changed", {"status": "Confirmed"}, order.id)
        await tx.outbox.mark_kafka_published(event_id)
        assert not await tx.outbox.record_failed_attempt(event_id, max_attempts=2)
        await tx.commit()

    async with uow() as tx:
        [pending] = await tx.outbox.get_pending()
        assert pending["kafka_published"] is True
        assert pending["attempts"] == 1
        assert await tx.outbox.record_failed_attempt(event_id, max_attempts=2)
        await tx.commit()

    async with uow() as tx:
        assert await tx.outbox.get_pending() == []


def fixed_clock():
    return PLACED_AT


async def test_concurrent_delivery_confirmations_issue_one_invoice(locking_session_factory):
    uow = UnitOfWork(locking_session_factory)
    async with uow() as tx:
        await tx.price_changes.create(PriceChange(
            isbn="111", effective_from=date(2023, 1, 1), new_price=Decimal("100"),
            created_by=1, created_at=PLACED_AT,
        ))
        for percent, scope in [("10", {"isbn": "111"}), ("20", {"category_id": 1})]:
            await tx.promotions.create(Promotion(
                name=f"{percent} off", discount_type=DiscountType.PERCENT, discount_value=Decimal(percent),
                start_date=date(2024, 1, 1), end_date=date(2024, 1, 31), created_at=PLACED_AT, **scope,
            ))
        await tx.commit()

    order = await CreateOrderUseCase(uow, clock=fixed_clock)(CreateOrderDTO(
        customer_account_id=70,
        lines=[OrderLineDTO(isbn="111", quantity=3)],
        receiver_name="Ann Reader",
        receiver_phone="+31 600 000 000",
        shipping_address="1 Harbor Lane",
    ))
    await ApproveOrderUseCase(uow, clock=fixed_clock)(order.id, ApprovalDecision.APPROVE, 1)
    await AssignDeliveryUseCase(uow, clock=fixed_clock)(order.id, 2, 1)

    confirm = ConfirmDeliveredUseCase(
        uow, InvoiceGenerator(InclusiveTaxPolicy(Decimal("0")), "INV", clock=fixed_clock), clock=fixed_clock
    )
    results = await asyncio.gather(
        run_operation("ConfirmDelivered", confirm(order.id, 2), "Delivered"),
        run_operation("ConfirmDelivered", confirm(order.id, 2), "Delivered"),
    )

    assert sorted(r.success for r in results) == [False, True]
    [failure] = [r for r in results if not r.success]
    assert failure.errors[0] in ("CONFLICT", "INVALID_TRANSITION")

    async with locking_session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(invoices_tbl))
    assert count == 1

    async with uow() as tx:
        delivered = await tx.orders.get_by_id(order.id)
        invoice = await tx.invoices.get_by_order_id(order.id)
    assert delivered.status == OrderStatus.DELIVERED
    assert delivered.lines[0].unit_price == Decimal("80.00")
    assert invoice.total_amount == Decimal("240.00")
