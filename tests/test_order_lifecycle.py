from datetime import date, timedelta
from decimal import Decimal

import pytest

from bookstore.domain.models import DiscountType, OrderStatus, Promotion
from bookstore.domain.exceptions import (
    ConflictError, InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError,
)
from bookstore.application.events import ORDER_STATUS_CHANGED
from bookstore.application.interfaces import OrderCriteria
from bookstore.application.approve_order import ApprovalDecision, ApproveOrderUseCase
from bookstore.application.assign_delivery import AssignDeliveryUseCase
from bookstore.application.confirm_delivered import ConfirmDeliveredUseCase
from bookstore.application.cancel_order import CancelOrderUseCase
from bookstore.application.create_order import OrderLineDTO
from bookstore.application.get_order import GetOrderUseCase, ListOrdersUseCase

from conftest import (
    CLERK_ID, DUNE, EMMA, FIXED_NOW, MANAGER_ID, NORTH_COURIER_ID, RETIRED, SOUTH_COURIER_ID,
    fixed_clock, order_request,
)
from fakes import InMemoryOrderRepository


@pytest.fixture
def approve(uow):
    return ApproveOrderUseCase(uow, clock=fixed_clock)


@pytest.fixture
def assign(uow):
    return AssignDeliveryUseCase(uow, clock=fixed_clock)


@pytest.fixture
def confirm(uow, invoice_generator):
    return ConfirmDeliveredUseCase(uow, invoice_generator, clock=fixed_clock)


async def test_create_order_freezes_unit_prices(place_order, store):
    order = await place_order()

    assert order.status == OrderStatus.PENDING_CONFIRMATION
    assert order.customer_id == 7
    assert [(l.isbn, l.quantity, l.unit_price) for l in order.lines] == [
        (DUNE, 2, Decimal("120.00")),
        (EMMA, 1, Decimal("50.00")),
    ]
    assert order.total_amount == Decimal("290.00")
    assert order.total_quantity == 3
    assert store.orders[order.id] == order


async def test_create_order_applies_best_promotion(place_order, store):
    store.promotions.append(Promotion(
        id=1, name="Sci-fi week", discount_type=DiscountType.PERCENT, discount_value=Decimal("25"),
        category_id=1, start_date=date(2024, 1, 8), end_date=date(2024, 1, 14), created_at=FIXED_NOW,
    ))

    order = await place_order(order_request({DUNE: 1}))

    assert order.lines[0].unit_price == Decimal("90.00")


async def test_create_order_queues_status_notice(place_order, store):
    order = await place_order()

    assert len(store.outbox) == 1
    event = store.outbox[0]
    assert event["event_type"] == ORDER_STATUS_CHANGED
    assert event["event_data"]["previous_status"] is None
    assert event["event_data"]["status"] == "PendingConfirmation"
    assert event["event_data"]["idempotency_key"] == f"{order.id}_PendingConfirmation"


@pytest.mark.parametrize("quantities", [[], [0], [-1]])
async def test_create_order_rejects_bad_lines(place_order, store, quantities):
    lines = [OrderLineDTO(isbn=DUNE, quantity=q) for q in quantities]
    dto = order_request().model_copy(update={"lines": lines})

    with pytest.raises(ValidationError):
        await place_order(dto)
    assert store.orders == {}


@pytest.mark.parametrize(
    "changes",
    [
        {"receiver_name": "A" * 151},
        {"receiver_phone": "0" * 31},
        {"shipping_address": "North Street " * 30},
        {"note": "x" * 256},
        {"lines": [OrderLineDTO(isbn=DUNE, quantity=3_000_000_000)]},
        {"lines": [OrderLineDTO(isbn="9" * 21, quantity=1)]},
    ],
)
async def test_create_order_rejects_oversized_input(place_order, store, changes):
    dto = order_request().model_copy(update=changes)

    with pytest.raises(ValidationError):
        await place_order(dto)
    assert store.orders == {}


async def test_create_order_rejects_duplicate_isbn(place_order):
    dto = order_request({DUNE: 1})
    dto.lines = dto.lines * 2

    with pytest.raises(ValidationError):
        await place_order(dto)


async def test_create_order_requires_receiver(place_order):
    dto = order_request().model_copy(update={"receiver_name": "  "})

    with pytest.raises(ValidationError):
        await place_order(dto)


@pytest.mark.parametrize("isbn", ["978-9999999999", RETIRED])
async def test_create_order_with_unknown_or_retired_book(place_order, store, isbn):
    with pytest.raises(NotFoundError):
        await place_order(order_request({isbn: 1}))
    assert store.orders == {}
    assert store.outbox == []


async def test_create_order_for_unknown_customer(place_order):
    dto = order_request().model_copy(update={"customer_account_id": 999})

    with pytest.raises(NotFoundError):
        await place_order(dto)


async def test_create_order_without_price_rolls_back(place_order, store):
    store.price_changes = [c for c in store.price_changes if c.isbn != EMMA]

    with pytest.raises(NotFoundError):
        await place_order()
    assert store.orders == {}


async def test_full_lifecycle(place_order, approve, assign, confirm, store):
    order = await place_order()

    order = await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)
    assert order.status == OrderStatus.CONFIRMED
    assert order.approved_by == MANAGER_ID

    order = await assign(order.id, NORTH_COURIER_ID, MANAGER_ID)
    assert order.status == OrderStatus.OUT_FOR_DELIVERY
    assert order.delivered_by == NORTH_COURIER_ID

    order = await confirm(order.id, NORTH_COURIER_ID)
    assert order.status == OrderStatus.DELIVERED
    assert order.delivery_at == FIXED_NOW

    assert store.orders[order.id].status == OrderStatus.DELIVERED
    assert [e["event_data"]["status"] for e in store.outbox] == [
        "PendingConfirmation", "Confirmed", "OutForDelivery", "Delivered",
    ]
    assert store.outbox[-1]["event_data"]["previous_status"] == "OutForDelivery"


async def test_reject_cancels_and_blocks_delivery(place_order, approve, assign, store):
    order = await place_order()

    order = await approve(order.id, ApprovalDecision.REJECT, MANAGER_ID)
    assert order.status == OrderStatus.CANCELLED

    with pytest.raises(InvalidTransitionError):
        await assign(order.id, NORTH_COURIER_ID, MANAGER_ID)
    assert store.orders[order.id].status == OrderStatus.CANCELLED


async def test_confirm_pending_order_is_invalid(place_order, confirm):
    order = await place_order()

    with pytest.raises(InvalidTransitionError):
        await confirm(order.id, MANAGER_ID)


async def test_assign_delivered_order_is_invalid(place_order, approve, assign, confirm):
    order = await place_order()
    await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)
    await assign(order.id, NORTH_COURIER_ID, MANAGER_ID)
    await confirm(order.id, NORTH_COURIER_ID)

    with pytest.raises(InvalidTransitionError):
        await assign(order.id, SOUTH_COURIER_ID, MANAGER_ID)


async def test_approve_twice_is_invalid(place_order, approve):
    order = await place_order()
    await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)

    with pytest.raises(InvalidTransitionError):
        await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)


async def test_approval_needs_capability(place_order, approve, store):
    order = await place_order()

    with pytest.raises(UnauthorizedError):
        await approve(order.id, ApprovalDecision.APPROVE, CLERK_ID)
    assert store.orders[order.id].status == OrderStatus.PENDING_CONFIRMATION


async def test_unknown_order(approve):
    with pytest.raises(NotFoundError):
        await approve("missing", ApprovalDecision.APPROVE, MANAGER_ID)


async def test_assign_requires_courier(place_order, approve, assign):
    order = await place_order()
    await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)

    with pytest.raises(ValidationError):
        await assign(order.id, CLERK_ID, MANAGER_ID)
    with pytest.raises(NotFoundError):
        await assign(order.id, 404, MANAGER_ID)


async def test_only_the_courier_or_a_manager_confirms(place_order, approve, assign, confirm):
    order = await place_order()
    await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)
    await assign(order.id, NORTH_COURIER_ID, MANAGER_ID)

    with pytest.raises(UnauthorizedError):
        await confirm(order.id, SOUTH_COURIER_ID)

    order = await confirm(order.id, MANAGER_ID)
    assert order.status == OrderStatus.DELIVERED


async def test_lost_race_is_a_conflict(place_order, approve, store, monkeypatch):
    order = await place_order()
    guarded_transition = InMemoryOrderRepository.transition

    async def racing_transition(self, order_id, expected, new_status, **changes):
        # another writer cancels the order between our read and our write
        store.orders[order_id] = store.orders[order_id].model_copy(update={"status": OrderStatus.CANCELLED})
        return await guarded_transition(self, order_id, expected, new_status, **changes)

    monkeypatch.setattr(InMemoryOrderRepository, "transition", racing_transition)

    with pytest.raises(ConflictError):
        await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)
    assert store.orders[order.id].status == OrderStatus.PENDING_CONFIRMATION


async def test_cancellation_disabled_by_default(place_order, uow, store):
    order = await place_order()

    with pytest.raises(InvalidTransitionError):
        await CancelOrderUseCase(uow, clock=fixed_clock)(order.id, MANAGER_ID, "customer called")
    assert store.orders[order.id].status == OrderStatus.PENDING_CONFIRMATION


async def test_cancellation_when_enabled(place_order, approve, uow, store):
    order = await place_order()
    await approve(order.id, ApprovalDecision.APPROVE, MANAGER_ID)
    cancel = CancelOrderUseCase(uow, enabled=True, clock=fixed_clock)

    with pytest.raises(UnauthorizedError):
        await cancel(order.id, CLERK_ID)

    order = await cancel(order.id, MANAGER_ID, "customer called")
    assert order.status == OrderStatus.CANCELLED
    assert store.outbox[-1]["event_data"]["reason"] == "customer called"


async def test_get_order_returns_all_lines(place_order, uow):
    order = await place_order()

    loaded = await GetOrderUseCase(uow)(order.id)

    assert loaded.lines == order.lines


async def test_list_orders_filters_and_pages(place_order, approve, uow):
    first = await place_order()
    second = await place_order(order_request({EMMA: 1}).model_copy(update={"receiver_name": "Bob Buyer"}))
    await approve(first.id, ApprovalDecision.APPROVE, MANAGER_ID)
    list_orders = ListOrdersUseCase(uow)

    page = await list_orders(OrderCriteria(status=OrderStatus.CONFIRMED))
    assert [o.id for o in page.orders] == [first.id]

    page = await list_orders(OrderCriteria(keyword="bob"))
    assert [o.id for o in page.orders] == [second.id]

    page = await list_orders(OrderCriteria(), page_number=2, page_size=1)
    assert page.total_count == 2
    assert page.total_pages == 2
    assert len(page.orders) == 1

    page = await list_orders(OrderCriteria(placed_from=FIXED_NOW + timedelta(days=1)))
    assert page.total_count == 0
    assert page.total_pages == 0


@pytest.mark.parametrize(
    "criteria, page_number, page_size",
    [
        (OrderCriteria(), 0, 10),
        (OrderCriteria(), 1, 0),
        (OrderCriteria(), 1, 101),
        (OrderCriteria(placed_from=FIXED_NOW, placed_to=FIXED_NOW - timedelta(days=1)), 1, 10),
    ],
)
async def test_list_orders_validates_paging(uow, criteria, page_number, page_size):
    with pytest.raises(ValidationError):
        await ListOrdersUseCase(uow)(criteria, page_number, page_size)
