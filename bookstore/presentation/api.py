from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from bookstore.config import settings
from bookstore.database import AsyncSessionLocal
from bookstore.domain.models import OrderStatus
from bookstore.domain.invoicing import InclusiveTaxPolicy
from bookstore.domain.exceptions import (
    ConflictError, InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError
)
from bookstore.application.results import INTERNAL_ERROR, TIMEOUT, Result, run_operation
from bookstore.application.interfaces import OrderCriteria
from bookstore.application.create_order import CreateOrderUseCase, CreateOrderDTO, OrderLineDTO
from bookstore.application.get_order import GetOrderUseCase, ListOrdersUseCase
from bookstore.application.approve_order import ApprovalDecision, ApproveOrderUseCase
from bookstore.application.assign_delivery import AssignDeliveryUseCase
from bookstore.application.confirm_delivered import ConfirmDeliveredUseCase
from bookstore.application.cancel_order import CancelOrderUseCase
from bookstore.application.delivery_candidates import GetDeliveryCandidatesUseCase
from bookstore.application.generate_invoice import GenerateInvoiceUseCase, GetInvoiceUseCase, InvoiceGenerator
from bookstore.application.process_payment import MarkInvoicePaidUseCase, PaymentConfirmationDTO
from bookstore.application.pricing_queries import (
    GetActivePromotionsUseCase, GetCurrentPriceUseCase, GetPriceHistoryUseCase
)
from bookstore.application.catalog_admin import (
    CreatePromotionUseCase, PriceChangeDTO, PromotionDTO, RecordPriceChangeUseCase
)
from bookstore.infrastructure.unit_of_work import UnitOfWork
from bookstore.presentation.schemas import (
    ApprovalRequest, CancellationRequest, CreateOrderRequest, DeliveryAssignmentRequest,
    DeliveryConfirmationRequest, InvoiceResponse, OrderPageResponse, OrderResponse,
    PaymentCallbackRequest, PriceChangeRequest, PromotionRequest
)

router = APIRouter()

ERROR_STATUS = {
    NotFoundError.code: 404,
    InvalidTransitionError.code: 409,
    ValidationError.code: 422,
    UnauthorizedError.code: 403,
    ConflictError.code: 409,
    TIMEOUT: 504,
    INTERNAL_ERROR: 500,
}

DECISION_MESSAGES = {
    ApprovalDecision.APPROVE: "Order approved",
    ApprovalDecision.REJECT: "Order rejected",
}


def respond(result: Result, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    if result.success:
        status_code = success_status
    else:
        status_code = ERROR_STATUS.get(result.errors[0], status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result))


async def execute(name: str, operation, success_message: str) -> Result:
    return await run_operation(name, operation, success_message, timeout=settings.OPERATION_TIMEOUT_SECONDS)


# Use case factories
def get_unit_of_work() -> UnitOfWork:
    return UnitOfWork(AsyncSessionLocal)


def get_invoice_generator() -> InvoiceGenerator:
    return InvoiceGenerator(
        InclusiveTaxPolicy(settings.TAX_RATE, settings.CURRENCY_DECIMAL_PLACES),
        settings.INVOICE_NUMBER_PREFIX
    )


def get_create_order_use_case(uow=Depends(get_unit_of_work)):
    return CreateOrderUseCase(uow, settings.CURRENCY_DECIMAL_PLACES)


def get_get_order_use_case(uow=Depends(get_unit_of_work)):
    return GetOrderUseCase(uow)


def get_list_orders_use_case(uow=Depends(get_unit_of_work)):
    return ListOrdersUseCase(uow)


def get_approve_order_use_case(uow=Depends(get_unit_of_work)):
    return ApproveOrderUseCase(uow)


def get_assign_delivery_use_case(uow=Depends(get_unit_of_work)):
    return AssignDeliveryUseCase(uow)


def get_confirm_delivered_use_case(uow=Depends(get_unit_of_work), generator=Depends(get_invoice_generator)):
    return ConfirmDeliveredUseCase(uow, generator)


def get_cancel_order_use_case(uow=Depends(get_unit_of_work)):
    return CancelOrderUseCase(uow, enabled=settings.ORDER_CANCELLATION_ENABLED)


def get_delivery_candidates_use_case(uow=Depends(get_unit_of_work)):
    return GetDeliveryCandidatesUseCase(uow)


def get_generate_invoice_use_case(uow=Depends(get_unit_of_work), generator=Depends(get_invoice_generator)):
    return GenerateInvoiceUseCase(uow, generator)


def get_get_invoice_use_case(uow=Depends(get_unit_of_work)):
    return GetInvoiceUseCase(uow)


def get_mark_invoice_paid_use_case(uow=Depends(get_unit_of_work)):
    return MarkInvoicePaidUseCase(uow)


def get_current_price_use_case(uow=Depends(get_unit_of_work)):
    return GetCurrentPriceUseCase(uow)


def get_price_history_use_case(uow=Depends(get_unit_of_work)):
    return GetPriceHistoryUseCase(uow)


def get_active_promotions_use_case(uow=Depends(get_unit_of_work)):
    return GetActivePromotionsUseCase(uow)


def get_record_price_change_use_case(uow=Depends(get_unit_of_work)):
    return RecordPriceChangeUseCase(uow)


def get_create_promotion_use_case(uow=Depends(get_unit_of_work)):
    return CreatePromotionUseCase(uow)


@router.post("/orders")
async def create_order(
    request: CreateOrderRequest,
    use_case: CreateOrderUseCase = Depends(get_create_order_use_case)
):
    """Place an order; unit prices are fixed at this moment"""
    dto = CreateOrderDTO(
        customer_account_id=request.customer_account_id,
        lines=[OrderLineDTO(isbn=line.isbn, quantity=line.quantity) for line in request.lines],
        receiver_name=request.receiver_name,
        receiver_phone=request.receiver_phone,
        shipping_address=request.shipping_address,
        note=request.note
    )
    result = await execute("CreateOrder", use_case(dto), "Order created")
    return respond(result.map(OrderResponse.from_domain), status.HTTP_201_CREATED)


@router.get("/orders")
async def list_orders(
    keyword: Optional[str] = None,
    customer_id: Optional[int] = None,
    order_status: Optional[OrderStatus] = None,
    delivered_by: Optional[int] = None,
    placed_from: Optional[datetime] = None,
    placed_to: Optional[datetime] = None,
    page_number: int = 1,
    page_size: int = 10,
    use_case: ListOrdersUseCase = Depends(get_list_orders_use_case)
):
    criteria = OrderCriteria(
        keyword=keyword,
        customer_id=customer_id,
        status=order_status,
        delivered_by=delivered_by,
        placed_from=placed_from,
        placed_to=placed_to
    )
    result = await execute("GetOrders", use_case(criteria, page_number, page_size), "Orders found")
    return respond(result.map(OrderPageResponse.from_page))


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    result = await execute("GetOrder", use_case(order_id), "Order found")
    return respond(result.map(OrderResponse.from_domain))


@router.post("/orders/{order_id}/approval")
async def approve_order(
    order_id: str,
    request: ApprovalRequest,
    use_case: ApproveOrderUseCase = Depends(get_approve_order_use_case)
):
    """Approve or reject a pending order"""
    result = await execute(
        "ApproveOrder", use_case(order_id, request.decision, request.approver_id), DECISION_MESSAGES[request.decision]
    )
    return respond(result.map(OrderResponse.from_domain))


@router.get("/orders/{order_id}/delivery-candidates")
async def delivery_candidates(
    order_id: str,
    use_case: GetDeliveryCandidatesUseCase = Depends(get_delivery_candidates_use_case)
):
    """Couriers ranked by region match, then by current load"""
    result = await execute("GetDeliveryCandidates", use_case(order_id), "Delivery candidates ranked")
    return respond(result)


@router.post("/orders/{order_id}/delivery-assignment")
async def assign_delivery(
    order_id: str,
    request: DeliveryAssignmentRequest,
    use_case: AssignDeliveryUseCase = Depends(get_assign_delivery_use_case)
):
    result = await execute(
        "AssignDelivery", use_case(order_id, request.employee_id, request.assigner_id), "Order out for delivery"
    )
    return respond(result.map(OrderResponse.from_domain))


@router.post("/orders/{order_id}/delivery-confirmation")
async def confirm_delivered(
    order_id: str,
    request: DeliveryConfirmationRequest,
    use_case: ConfirmDeliveredUseCase = Depends(get_confirm_delivered_use_case)
):
    """Mark an order delivered; its invoice is issued in the same transaction"""
    result = await execute("ConfirmDelivered", use_case(order_id, request.confirmer_id), "Order delivered")
    return respond(result.map(OrderResponse.from_domain))


@router.post("/orders/{order_id}/cancellation")
async def cancel_order(
    order_id: str,
    request: CancellationRequest,
    use_case: CancelOrderUseCase = Depends(get_cancel_order_use_case)
):
    result = await execute("CancelOrder", use_case(order_id, request.actor_id, request.reason), "Order cancelled")
    return respond(result.map(OrderResponse.from_domain))


@router.get("/orders/{order_id}/invoice")
async def get_invoice(
    order_id: str,
    use_case: GetInvoiceUseCase = Depends(get_get_invoice_use_case)
):
    result = await execute("GetInvoiceByOrderId", use_case(order_id), "Invoice found")
    return respond(result.map(InvoiceResponse.from_domain))


@router.post("/orders/{order_id}/invoice")
async def generate_invoice(
    order_id: str,
    use_case: GenerateInvoiceUseCase = Depends(get_generate_invoice_use_case)
):
    """Issue the invoice of a delivered or paid order; repeated calls return the same one"""
    result = await execute("GenerateInvoice", use_case(order_id), "Invoice issued")
    return respond(result.map(InvoiceResponse.from_domain))


@router.post("/payments/callback")
async def payment_callback(
    callback: PaymentCallbackRequest,
    use_case: MarkInvoicePaidUseCase = Depends(get_mark_invoice_paid_use_case)
):
    """Payment confirmation: order X paid with reference R at T"""
    dto = PaymentConfirmationDTO(
        order_id=callback.order_id,
        reference=callback.reference,
        paid_at=callback.paid_at,
        method=callback.method
    )
    result = await execute("MarkInvoicePaid", use_case(dto), "Payment recorded")
    return respond(result.map(InvoiceResponse.from_domain))


@router.get("/books/{isbn}/price")
async def current_price(
    isbn: str,
    as_of: Optional[date] = None,
    use_case: GetCurrentPriceUseCase = Depends(get_current_price_use_case)
):
    result = await execute("GetCurrentPrice", use_case(isbn, as_of), "Price found")
    return respond(result)


@router.get("/books/{isbn}/price-history")
async def price_history(
    isbn: str,
    use_case: GetPriceHistoryUseCase = Depends(get_price_history_use_case)
):
    result = await execute("GetPriceHistory", use_case(isbn), "Price history found")
    return respond(result)


@router.get("/books/{isbn}/promotions")
async def active_promotions(
    isbn: str,
    as_of: Optional[date] = None,
    use_case: GetActivePromotionsUseCase = Depends(get_active_promotions_use_case)
):
    result = await execute("GetActivePromotionsForBook", use_case(isbn, as_of), "Active promotions found")
    return respond(result)


@router.post("/books/{isbn}/price-changes")
async def record_price_change(
    isbn: str,
    request: PriceChangeRequest,
    use_case: RecordPriceChangeUseCase = Depends(get_record_price_change_use_case)
):
    dto = PriceChangeDTO(
        isbn=isbn,
        new_price=request.new_price,
        effective_from=request.effective_from,
        employee_id=request.employee_id
    )
    result = await execute("RecordPriceChange", use_case(dto), "Price change recorded")
    return respond(result, status.HTTP_201_CREATED)


@router.post("/promotions")
async def create_promotion(
    request: PromotionRequest,
    use_case: CreatePromotionUseCase = Depends(get_create_promotion_use_case)
):
    result = await execute("CreatePromotion", use_case(PromotionDTO(**request.model_dump())), "Promotion created")
    return respond(result, status.HTTP_201_CREATED)
