from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional

from pydantic import BaseModel

from bookstore.domain.models import PriceChange, Promotion


class PricedLine(BaseModel):
    """Value Object: how a unit price was arrived at"""
    isbn: str
    as_of: date
    base_price: Decimal
    discount: Decimal
    promotion_id: Optional[int] = None
    unit_price: Decimal


def minor_unit(decimal_places: int) -> Decimal:
    return Decimal(1).scaleb(-decimal_places)


def effective_price_change(changes: Iterable[PriceChange], as_of: date) -> Optional[PriceChange]:
    """Latest change effective on or before as_of; equal dates go to the greatest id"""
    candidates = [c for c in changes if c.effective_from <= as_of]
    if not candidates:
        return None
    return max(candidates, key=lambda c: (c.effective_from, c.id))


def price_timeline(changes: Iterable[PriceChange]) -> List[PriceChange]:
    return sorted(changes, key=lambda c: (c.effective_from, c.id))


def best_promotion(promotions: Iterable[Promotion], base_price: Decimal) -> Optional[Promotion]:
    """Largest absolute discount wins, ties go to the lowest promotion id"""
    promotions = list(promotions)
    if not promotions:
        return None
    return min(promotions, key=lambda p: (-p.discount_for(base_price), p.id))


def price_line(
    isbn: str,
    as_of: date,
    base_price: Decimal,
    promotions: Iterable[Promotion],
    decimal_places: int = 2,
) -> PricedLine:
    promotion = best_promotion(promotions, base_price)
    discount = promotion.discount_for(base_price) if promotion else Decimal("0")
    unit_price = max(base_price - discount, Decimal("0"))
    unit_price = unit_price.quantize(minor_unit(decimal_places), rounding=ROUND_HALF_UP)
    return PricedLine(
        isbn=isbn,
        as_of=as_of,
        base_price=base_price,
        discount=discount,
        promotion_id=promotion.id if promotion else None,
        unit_price=unit_price,
    )
