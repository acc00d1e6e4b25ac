from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from bookstore.domain.models import (
    Book, Capability, Customer, Employee, Invoice, Order, OrderStatus,
    PaymentConfirmation, PriceChange, Promotion,
)


class OrderCriteria(BaseModel):
    keyword: Optional[str] = None
    customer_id: Optional[int] = None
    status: Optional[OrderStatus] = None
    delivered_by: Optional[int] = None
    placed_from: Optional[datetime] = None
    placed_to: Optional[datetime] = None


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str, for_update: bool = False) -> Optional[Order]:
        pass

    @abstractmethod
    async def search(self, criteria: OrderCriteria, offset: int, limit: int) -> Tuple[List[Order], int]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def transition(self, order_id: str, expected: OrderStatus, new_status: OrderStatus, **changes) -> bool:
        """Guarded write: applies only while the order is still in `expected`"""

    @abstractmethod
    async def count_active_deliveries(self) -> Dict[int, int]:
        pass


class BookRepository(ABC):
    @abstractmethod
    async def get_by_isbn(self, isbn: str) -> Optional[Book]:
        pass

    @abstractmethod
    async def get_many(self, isbns: Iterable[str]) -> Dict[str, Book]:
        pass


class CustomerRepository(ABC):
    @abstractmethod
    async def get_by_account_id(self, account_id: int) -> Optional[Customer]:
        pass


class EmployeeRepository(ABC):
    @abstractmethod
    async def get_by_id(self, employee_id: int) -> Optional[Employee]:
        pass

    @abstractmethod
    async def list_with_capability(self, capability: Capability) -> List[Employee]:
        pass


class PriceChangeRepository(ABC):
    @abstractmethod
    async def get_effective(self, isbn: str, as_of: date) -> Optional[PriceChange]:
        pass

    @abstractmethod
    async def list_for_isbn(self, isbn: str) -> List[PriceChange]:
        pass

    @abstractmethod
    async def create(self, change: PriceChange) -> PriceChange:
        pass


class PromotionRepository(ABC):
    @abstractmethod
    async def list_running_for_book(self, book: Book, as_of: date) -> List[Promotion]:
        pass

    @abstractmethod
    async def create(self, promotion: Promotion) -> Promotion:
        pass


class InvoiceRepository(ABC):
    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def create(self, invoice: Invoice) -> Invoice:
        """Raises ConflictError when the order already has an invoice"""

    @abstractmethod
    async def mark_paid(self, order_id: str, method: Optional[str], reference: str, paid_at: datetime) -> None:
        pass


class PaymentRepository(ABC):
    @abstractmethod
    async def get_by_order_id(self, order_id: str) -> Optional[PaymentConfirmation]:
        pass

    @abstractmethod
    async def create(self, payment: PaymentConfirmation) -> None:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_kafka_published(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass

    @abstractmethod
    async def record_failed_attempt(self, event_id: str, max_attempts: int) -> bool:
        """Counts one failed delivery; True when the event has now been given up on"""
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def books(self) -> BookRepository:
        pass

    @property
    @abstractmethod
    def customers(self) -> CustomerRepository:
        pass

    @property
    @abstractmethod
    def employees(self) -> EmployeeRepository:
        pass

    @property
    @abstractmethod
    def price_changes(self) -> PriceChangeRepository:
        pass

    @property
    @abstractmethod
    def promotions(self) -> PromotionRepository:
        pass

    @property
    @abstractmethod
    def invoices(self) -> InvoiceRepository:
        pass

    @property
    @abstractmethod
    def payments(self) -> PaymentRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class NotificationsService(ABC):
    @abstractmethod
    async def send(self, message: str, reference_id: str, idempotency_key: str, user_id: str) -> bool:
        pass


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event_type: str, key: str, payload: dict) -> bool:
        pass
