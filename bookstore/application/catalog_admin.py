import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from pydantic import BaseModel

from bookstore.domain.models import DiscountType, PriceChange, Promotion, utcnow
from bookstore.domain.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class PriceChangeDTO(BaseModel):
    isbn: str
    new_price: Decimal
    effective_from: date
    employee_id: int


class PromotionDTO(BaseModel):
    name: str
    discount_type: DiscountType
    discount_value: Decimal
    isbn: Optional[str] = None
    category_id: Optional[int] = None
    start_date: date
    end_date: date
    active: bool = True


class RecordPriceChangeUseCase:
    """Appends to a book's price timeline; existing records are never edited"""

    def __init__(self, unit_of_work, clock: Callable[[], datetime] = utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, dto: PriceChangeDTO) -> PriceChange:
        if dto.new_price < 0:
            raise ValidationError("Price must not be negative")

        async with self._uow() as uow:
            if not await uow.books.get_by_isbn(dto.isbn):
                raise NotFoundError(f"Book {dto.isbn} not found")

            previous = await uow.price_changes.get_effective(dto.isbn, dto.effective_from)
            change = await uow.price_changes.create(
                PriceChange(
                    isbn=dto.isbn,
                    effective_from=dto.effective_from,
                    old_price=previous.new_price if previous else None,
                    new_price=dto.new_price,
                    created_by=dto.employee_id,
                    created_at=self._clock(),
                )
            )
            await uow.commit()

        logger.info(f"Price of {dto.isbn} from {dto.effective_from}: {change.old_price} -> {change.new_price}")
        return change


class CreatePromotionUseCase:
    def __init__(self, unit_of_work, clock: Callable[[], datetime] = utcnow):
        self._uow = unit_of_work
        self._clock = clock

    async def __call__(self, dto: PromotionDTO) -> Promotion:
        self._validate(dto)

        async with self._uow() as uow:
            if dto.isbn is not None and not await uow.books.get_by_isbn(dto.isbn):
                raise NotFoundError(f"Book {dto.isbn} not found")

            promotion = await uow.promotions.create(
                Promotion(**dto.model_dump(), created_at=self._clock())
            )
            await uow.commit()

        logger.info(f"Promotion {promotion.id} '{promotion.name}' created")
        return promotion

    def _validate(self, dto: PromotionDTO) -> None:
        if (dto.isbn is None) == (dto.category_id is None):
            raise ValidationError("A promotion applies to exactly one isbn or one category")
        if dto.end_date < dto.start_date:
            raise ValidationError("end_date must not be before start_date")
        if dto.discount_type == DiscountType.PERCENT and not 0 < dto.discount_value <= 100:
            raise ValidationError("Percent discount must be within (0, 100]")
        if dto.discount_type == DiscountType.FIXED_AMOUNT and dto.discount_value <= 0:
            raise ValidationError("Fixed discount must be positive")
