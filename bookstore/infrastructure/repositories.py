import uuid
from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple
from sqlalchemy import select, insert, update, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bookstore.domain.models import (
    Area, Book, Capability, Customer, DiscountType, Employee, Invoice, Order, OrderLine,
    OrderStatus, PaymentConfirmation, PaymentStatus, PriceChange, Promotion, utcnow,
)
from bookstore.domain.exceptions import ConflictError
from bookstore.infrastructure.db_schema import (
    orders_tbl, order_lines_tbl, books_tbl, customers_tbl, employees_tbl, employee_areas_tbl,
    price_changes_tbl, promotions_tbl, invoices_tbl, payment_confirmations_tbl, outbox_events_tbl,
    OUTBOX_FAILED, OUTBOX_PENDING, OUTBOX_PUBLISHED,
)
from bookstore.application.interfaces import (
    OrderCriteria, OrderRepository, BookRepository, CustomerRepository, EmployeeRepository,
    PriceChangeRepository, PromotionRepository, InvoiceRepository, PaymentRepository, OutboxRepository,
)


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        stmt = select(orders_tbl).where(orders_tbl.c.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        row = result.fetchone()
        if not row:
            return None
        lines = await self._load_lines([row.id])
        return self._to_domain(row, lines[row.id])

    async def search(self, criteria: OrderCriteria, offset: int, limit: int) -> Tuple[List[Order], int]:
        conditions = []
        if criteria.keyword:
            pattern = f"%{criteria.keyword}%"
            conditions.append(or_(
                orders_tbl.c.receiver_name.ilike(pattern),
                orders_tbl.c.receiver_phone.ilike(pattern),
            ))
        if criteria.customer_id is not None:
            conditions.append(orders_tbl.c.customer_id == criteria.customer_id)
        if criteria.status is not None:
            conditions.append(orders_tbl.c.status == criteria.status)
        if criteria.delivered_by is not None:
            conditions.append(orders_tbl.c.delivered_by == criteria.delivered_by)
        if criteria.placed_from is not None:
            conditions.append(orders_tbl.c.placed_at >= criteria.placed_from)
        if criteria.placed_to is not None:
            conditions.append(orders_tbl.c.placed_at <= criteria.placed_to)

        total = await self._session.scalar(
            select(func.count()).select_from(orders_tbl).where(*conditions)
        )
        result = await self._session.execute(
            select(orders_tbl)
            .where(*conditions)
            .order_by(orders_tbl.c.placed_at.desc(), orders_tbl.c.id)
            .offset(offset)
            .limit(limit)
        )
        rows = result.fetchall()
        lines = await self._load_lines([row.id for row in rows])
        return [self._to_domain(row, lines[row.id]) for row in rows], total or 0

    async def create(self, order: Order) -> None:
        await self._session.execute(
            insert(orders_tbl).values(
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
                updated_at=order.updated_at
            )
        )
        await self._session.execute(
            insert(order_lines_tbl),
            [
                {
                    "order_id": order.id,
                    "position": position,
                    "isbn": line.isbn,
                    "quantity": line.quantity,
                    "unit_price": line.unit_price,
                }
                for position, line in enumerate(order.lines)
            ]
        )

    async def transition(self, order_id: str, expected: OrderStatus, new_status: OrderStatus, **changes) -> bool:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id, orders_tbl.c.status == expected)
            .values(status=new_status, **changes)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def count_active_deliveries(self) -> Dict[int, int]:
        result = await self._session.execute(
            select(orders_tbl.c.delivered_by, func.count())
            .where(
                orders_tbl.c.status == OrderStatus.OUT_FOR_DELIVERY,
                orders_tbl.c.delivered_by.is_not(None)
            )
            .group_by(orders_tbl.c.delivered_by)
        )
        return {employee_id: count for employee_id, count in result.fetchall()}

    async def _load_lines(self, order_ids: List[str]) -> Dict[str, List[OrderLine]]:
        lines = defaultdict(list)
        if not order_ids:
            return lines
        result = await self._session.execute(
            select(order_lines_tbl)
            .where(order_lines_tbl.c.order_id.in_(order_ids))
            .order_by(order_lines_tbl.c.order_id, order_lines_tbl.c.position)
        )
        for row in result.fetchall():
            lines[row.order_id].append(
                OrderLine(isbn=row.isbn, quantity=row.quantity, unit_price=row.unit_price)
            )
        return lines

    def _to_domain(self, row, lines: List[OrderLine]) -> Order:
        """DB row → Domain"""
        return Order(
            id=row.id,
            customer_id=row.customer_id,
            status=OrderStatus(row.status),
            placed_at=row.placed_at,
            receiver_name=row.receiver_name,
            receiver_phone=row.receiver_phone,
            shipping_address=row.shipping_address,
            note=row.note,
            delivery_at=row.delivery_at,
            approved_by=row.approved_by,
            delivered_by=row.delivered_by,
            lines=lines,
            updated_at=row.updated_at
        )


class SQLAlchemyBookRepository(BookRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_isbn(self, isbn: str) -> Optional[Book]:
        result = await self._session.execute(
            select(books_tbl).where(books_tbl.c.isbn == isbn)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def get_many(self, isbns: Iterable[str]) -> Dict[str, Book]:
        isbns = list(set(isbns))
        if not isbns:
            return {}
        result = await self._session.execute(
            select(books_tbl).where(books_tbl.c.isbn.in_(isbns))
        )
        return {row.isbn: self._to_domain(row) for row in result.fetchall()}

    def _to_domain(self, row) -> Book:
        return Book(isbn=row.isbn, title=row.title, category_id=row.category_id, active=row.active)


class SQLAlchemyCustomerRepository(CustomerRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_account_id(self, account_id: int) -> Optional[Customer]:
        result = await self._session.execute(
            select(customers_tbl).where(customers_tbl.c.account_id == account_id)
        )
        row = result.fetchone()
        if not row:
            return None
        return Customer(id=row.id, account_id=row.account_id, full_name=row.full_name)


class SQLAlchemyEmployeeRepository(EmployeeRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, employee_id: int) -> Optional[Employee]:
        result = await self._session.execute(
            select(employees_tbl).where(employees_tbl.c.id == employee_id)
        )
        row = result.fetchone()
        if not row:
            return None
        areas = await self._load_areas([row.id])
        return self._to_domain(row, areas[row.id])

    async def list_with_capability(self, capability: Capability) -> List[Employee]:
        # JSON list column, matched in Python
        result = await self._session.execute(
            select(employees_tbl).order_by(employees_tbl.c.id)
        )
        rows = [row for row in result.fetchall() if capability.value in (row.capabilities or [])]
        areas = await self._load_areas([row.id for row in rows])
        return [self._to_domain(row, areas[row.id]) for row in rows]

    async def _load_areas(self, employee_ids: List[int]) -> Dict[int, List[Area]]:
        areas = defaultdict(list)
        if not employee_ids:
            return areas
        result = await self._session.execute(
            select(employee_areas_tbl)
            .where(employee_areas_tbl.c.employee_id.in_(employee_ids))
            .order_by(employee_areas_tbl.c.id)
        )
        for row in result.fetchall():
            areas[row.employee_id].append(
                Area(name=row.name, keywords=row.keywords, active=row.is_active)
            )
        return areas

    def _to_domain(self, row, areas: List[Area]) -> Employee:
        return Employee(
            id=row.id,
            full_name=row.full_name,
            phone=row.phone,
            email=row.email,
            capabilities=[Capability(c) for c in row.capabilities or []],
            areas=areas
        )


class SQLAlchemyPriceChangeRepository(PriceChangeRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_effective(self, isbn: str, as_of: date) -> Optional[PriceChange]:
        result = await self._session.execute(
            select(price_changes_tbl)
            .where(
                price_changes_tbl.c.isbn == isbn,
                price_changes_tbl.c.effective_from <= as_of
            )
            .order_by(price_changes_tbl.c.effective_from.desc(), price_changes_tbl.c.id.desc())
            .limit(1)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def list_for_isbn(self, isbn: str) -> List[PriceChange]:
        result = await self._session.execute(
            select(price_changes_tbl)
            .where(price_changes_tbl.c.isbn == isbn)
            .order_by(price_changes_tbl.c.effective_from, price_changes_tbl.c.id)
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def create(self, change: PriceChange) -> PriceChange:
        result = await self._session.execute(
            insert(price_changes_tbl).values(**change.model_dump(exclude={"id"}))
        )
        return change.model_copy(update={"id": result.inserted_primary_key[0]})

    def _to_domain(self, row) -> PriceChange:
        return PriceChange(
            id=row.id,
            isbn=row.isbn,
            effective_from=row.effective_from,
            old_price=row.old_price,
            new_price=row.new_price,
            created_by=row.created_by,
            created_at=row.created_at
        )


class SQLAlchemyPromotionRepository(PromotionRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_running_for_book(self, book: Book, as_of: date) -> List[Promotion]:
        result = await self._session.execute(
            select(promotions_tbl)
            .where(
                promotions_tbl.c.active.is_(True),
                promotions_tbl.c.start_date <= as_of,
                promotions_tbl.c.end_date >= as_of,
                or_(
                    promotions_tbl.c.isbn == book.isbn,
                    and_(
                        promotions_tbl.c.isbn.is_(None),
                        promotions_tbl.c.category_id == book.category_id
                    )
                )
            )
            .order_by(promotions_tbl.c.id)
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def create(self, promotion: Promotion) -> Promotion:
        result = await self._session.execute(
            insert(promotions_tbl).values(**promotion.model_dump(exclude={"id"}))
        )
        return promotion.model_copy(update={"id": result.inserted_primary_key[0]})

    def _to_domain(self, row) -> Promotion:
        return Promotion(
            id=row.id,
            name=row.name,
            discount_type=DiscountType(row.discount_type),
            discount_value=row.discount_value,
            isbn=row.isbn,
            category_id=row.category_id,
            start_date=row.start_date,
            end_date=row.end_date,
            active=row.active,
            created_at=row.created_at
        )


class SQLAlchemyInvoiceRepository(InvoiceRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_order_id(self, order_id: str) -> Optional[Invoice]:
        result = await self._session.execute(
            select(invoices_tbl).where(invoices_tbl.c.order_id == order_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def create(self, invoice: Invoice) -> Invoice:
        values = invoice.model_dump(exclude={"id"})
        try:
            result = await self._session.execute(insert(invoices_tbl).values(**values))
        except IntegrityError as e:
            raise ConflictError(f"Order {invoice.order_id} already has an invoice") from e
        return invoice.model_copy(update={"id": result.inserted_primary_key[0]})

    async def mark_paid(self, order_id: str, method: Optional[str], reference: str, paid_at: datetime) -> None:
        stmt = (
            update(invoices_tbl)
            .where(invoices_tbl.c.order_id == order_id)
            .values(
                payment_status=PaymentStatus.PAID,
                payment_method=method,
                payment_reference=reference,
                paid_at=paid_at,
                updated_at=func.now()
            )
        )
        await self._session.execute(stmt)

    def _to_domain(self, row) -> Invoice:
        return Invoice(
            id=row.id,
            order_id=row.order_id,
            invoice_number=row.invoice_number,
            total_amount=row.total_amount,
            tax_amount=row.tax_amount,
            payment_status=PaymentStatus(row.payment_status),
            payment_method=row.payment_method,
            payment_reference=row.payment_reference,
            paid_at=row.paid_at,
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyPaymentRepository(PaymentRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_order_id(self, order_id: str) -> Optional[PaymentConfirmation]:
        result = await self._session.execute(
            select(payment_confirmations_tbl).where(payment_confirmations_tbl.c.order_id == order_id)
        )
        row = result.fetchone()
        if not row:
            return None
        return PaymentConfirmation(
            order_id=row.order_id,
            reference=row.reference,
            method=row.method,
            paid_at=row.paid_at
        )

    async def create(self, payment: PaymentConfirmation) -> None:
        try:
            await self._session.execute(
                insert(payment_confirmations_tbl).values(**payment.model_dump())
            )
        except IntegrityError as e:
            raise ConflictError(f"Payment for order {payment.order_id} already recorded") from e


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        event_id = str(uuid.uuid4())
        await self._session.execute(
            insert(outbox_events_tbl).values(
                id=event_id,
                event_type=event_type,
                event_data=event_data,
                order_id=order_id,
                status=OUTBOX_PENDING,
                created_at=utcnow()
            )
        )
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        # rows locked by another worker are skipped
        columns = (
            outbox_events_tbl.c.id,
            outbox_events_tbl.c.event_type,
            outbox_events_tbl.c.event_data,
            outbox_events_tbl.c.order_id,
            outbox_events_tbl.c.kafka_published,
            outbox_events_tbl.c.attempts,
        )
        result = await self._session.execute(
            select(*columns)
            .where(outbox_events_tbl.c.status == OUTBOX_PENDING)
            .order_by(outbox_events_tbl.c.created_at, outbox_events_tbl.c.id)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        return [dict(row._mapping) for row in result.fetchall()]

    async def mark_as_published(self, event_id: str) -> None:
        await self._session.execute(
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status=OUTBOX_PUBLISHED, published_at=func.now())
        )

    async def mark_kafka_published(self, event_id: str) -> None:
        await self._session.execute(
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(kafka_published=True)
        )

    async def record_failed_attempt(self, event_id: str, max_attempts: int) -> bool:
        await self._session.execute(
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(attempts=outbox_events_tbl.c.attempts + 1)
        )
        attempts = await self._session.scalar(
            select(outbox_events_tbl.c.attempts).where(outbox_events_tbl.c.id == event_id)
        )
        if attempts is not None and attempts >= max_attempts:
            await self._session.execute(
                update(outbox_events_tbl)
                .where(outbox_events_tbl.c.id == event_id)
                .values(status=OUTBOX_FAILED)
            )
            return True
        return False
