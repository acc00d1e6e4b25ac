import logging
from datetime import date
from typing import List

from bookstore.domain.models import Book, PriceChange, Promotion
from bookstore.domain.pricing import PricedLine, price_line, price_timeline
from bookstore.domain.exceptions import NotFoundError
from bookstore.application.interfaces import UnitOfWork

logger = logging.getLogger(__name__)


class PricingResolver:
    """Catalog price of a book as of a date, read from the price-change timeline"""

    def __init__(self, uow: UnitOfWork):
        self._uow = uow

    async def get_current_price(self, isbn: str, as_of: date) -> PriceChange:
        change = await self._uow.price_changes.get_effective(isbn, as_of)
        if not change:
            raise NotFoundError(f"Book {isbn} has no price as of {as_of.isoformat()}")
        return change

    async def get_price_history(self, isbn: str) -> List[PriceChange]:
        return price_timeline(await self._uow.price_changes.list_for_isbn(isbn))


class PromotionResolver:
    def __init__(self, uow: UnitOfWork):
        self._uow = uow

    async def get_active_promotions(self, book: Book, as_of: date) -> List[Promotion]:
        promotions = await self._uow.promotions.list_running_for_book(book, as_of)
        # the domain rule is authoritative over the query
        return sorted(
            (p for p in promotions if p.applies_to(book) and p.is_running_on(as_of)),
            key=lambda p: p.id,
        )


class LineItemPricer:
    def __init__(self, uow: UnitOfWork, decimal_places: int = 2):
        self._prices = PricingResolver(uow)
        self._promotions = PromotionResolver(uow)
        self._decimal_places = decimal_places

    async def price(self, book: Book, as_of: date) -> PricedLine:
        change = await self._prices.get_current_price(book.isbn, as_of)
        promotions = await self._promotions.get_active_promotions(book, as_of)
        priced = price_line(book.isbn, as_of, change.new_price, promotions, self._decimal_places)
        logger.info(
            f"Priced {book.isbn} as of {as_of}: base {priced.base_price}, "
            f"promotion {priced.promotion_id}, unit {priced.unit_price}"
        )
        return priced
