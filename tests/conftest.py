from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from bookstore.domain.models import Area, Book, Capability, Customer, Employee, PriceChange
from bookstore.domain.invoicing import InclusiveTaxPolicy
from bookstore.application.create_order import CreateOrderDTO, CreateOrderUseCase, OrderLineDTO
from bookstore.application.generate_invoice import InvoiceGenerator

from fakes import FakeUnitOfWork, InMemoryStore

FIXED_NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)

DUNE = "978-0441172719"
EMMA = "978-0141439587"
RETIRED = "978-0000000000"

MANAGER_ID = 1
NORTH_COURIER_ID = 2
SOUTH_COURIER_ID = 3
CLERK_ID = 4
CUSTOMER_ACCOUNT_ID = 70


def fixed_clock() -> datetime:
    return FIXED_NOW


def price_change(isbn: str, effective_from: date, price: str, change_id: int) -> PriceChange:
    return PriceChange(
        id=change_id,
        isbn=isbn,
        effective_from=effective_from,
        new_price=Decimal(price),
        created_by=MANAGER_ID,
        created_at=FIXED_NOW,
    )


@pytest.fixture
def store() -> InMemoryStore:
    store = InMemoryStore()
    store.books = {
        DUNE: Book(isbn=DUNE, title="Dune", category_id=1),
        EMMA: Book(isbn=EMMA, title="Emma", category_id=2),
        RETIRED: Book(isbn=RETIRED, title="Out of print", category_id=1, active=False),
    }
    store.price_changes = [
        price_change(DUNE, date(2023, 1, 1), "100", 1),
        price_change(DUNE, date(2024, 1, 1), "120", 2),
        price_change(EMMA, date(2023, 1, 1), "50", 3),
        price_change(RETIRED, date(2023, 1, 1), "10", 4),
    ]
    store.customers = {7: Customer(id=7, account_id=CUSTOMER_ACCOUNT_ID, full_name="Ann Reader")}
    store.employees = {
        MANAGER_ID: Employee(id=MANAGER_ID, full_name="Mia Manager", capabilities=[Capability.APPROVE_ORDERS]),
        NORTH_COURIER_ID: Employee(
            id=NORTH_COURIER_ID,
            full_name="Nils North",
            capabilities=[Capability.DELIVER_ORDERS],
            areas=[Area(name="North", keywords="north, harbor")],
        ),
        SOUTH_COURIER_ID: Employee(
            id=SOUTH_COURIER_ID,
            full_name="Sara South",
            capabilities=[Capability.DELIVER_ORDERS],
            areas=[Area(name="South")],
        ),
        CLERK_ID: Employee(id=CLERK_ID, full_name="Carl Clerk"),
    }
    return store


@pytest.fixture
def uow(store) -> FakeUnitOfWork:
    return FakeUnitOfWork(store)


@pytest.fixture
def invoice_generator() -> InvoiceGenerator:
    return InvoiceGenerator(InclusiveTaxPolicy(Decimal("0.10")), "INV", clock=fixed_clock)


def order_request(lines: dict = None, address: str = "12 North Street") -> CreateOrderDTO:
    lines = lines or {DUNE: 2, EMMA: 1}
    return CreateOrderDTO(
        customer_account_id=CUSTOMER_ACCOUNT_ID,
        lines=[OrderLineDTO(isbn=isbn, quantity=qty) for isbn, qty in lines.items()],
        receiver_name="Ann Reader",
        receiver_phone="+31 600 000 000",
        shipping_address=address,
    )


@pytest.fixture
def place_order(uow):
    async def _place(dto: CreateOrderDTO = None):
        return await CreateOrderUseCase(uow, clock=fixed_clock)(dto or order_request())
    return _place
