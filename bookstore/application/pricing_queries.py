from datetime import date
from typing import Callable, List, Optional

from bookstore.domain.models import Book, PriceChange, Promotion, utcnow
from bookstore.domain.exceptions import NotFoundError
from bookstore.application.interfaces import UnitOfWork
from bookstore.application.pricing import PricingResolver, PromotionResolver


def today() -> date:
    return utcnow().date()


async def _require_book(uow: UnitOfWork, isbn: str) -> Book:
    book = await uow.books.get_by_isbn(isbn)
    if not book:
        raise NotFoundError(f"Book {isbn} not found")
    return book


class GetCurrentPriceUseCase:
    def __init__(self, unit_of_work, today: Callable[[], date] = today):
        self._uow = unit_of_work
        self._today = today

    async def __call__(self, isbn: str, as_of: Optional[date] = None) -> PriceChange:
        async with self._uow() as uow:
            return await PricingResolver(uow).get_current_price(isbn, as_of or self._today())


class GetPriceHistoryUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, isbn: str) -> List[PriceChange]:
        async with self._uow() as uow:
            await _require_book(uow, isbn)
            return await PricingResolver(uow).get_price_history(isbn)


class GetActivePromotionsUseCase:
    def __init__(self, unit_of_work, today: Callable[[], date] = today):
        self._uow = unit_of_work
        self._today = today

    async def __call__(self, isbn: str, as_of: Optional[date] = None) -> List[Promotion]:
        async with self._uow() as uow:
            book = await _require_book(uow, isbn)
            return await PromotionResolver(uow).get_active_promotions(book, as_of or self._today())
