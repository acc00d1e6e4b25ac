from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookstore.infrastructure.repositories import (
    SQLAlchemyOrderRepository,
    SQLAlchemyBookRepository,
    SQLAlchemyCustomerRepository,
    SQLAlchemyEmployeeRepository,
    SQLAlchemyPriceChangeRepository,
    SQLAlchemyPromotionRepository,
    SQLAlchemyInvoiceRepository,
    SQLAlchemyPaymentRepository,
    SQLAlchemyOutboxRepository
)


class UnitOfWork:
    """One session, one transaction; nothing persists unless commit() is called"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self):
        async with self._session_factory() as session:
            try:
                yield _UnitOfWorkImpl(session)
                # no-op after commit, discards everything otherwise
                await session.rollback()
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.orders = SQLAlchemyOrderRepository(session)
        self.books = SQLAlchemyBookRepository(session)
        self.customers = SQLAlchemyCustomerRepository(session)
        self.employees = SQLAlchemyEmployeeRepository(session)
        self.price_changes = SQLAlchemyPriceChangeRepository(session)
        self.promotions = SQLAlchemyPromotionRepository(session)
        self.invoices = SQLAlchemyInvoiceRepository(session)
        self.payments = SQLAlchemyPaymentRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
