"""
Pricing Resolver.

Determines the rates applicable to a parcel.
Follows priority:
1. The parcel's category rates (each rate falls back independently)
2. Default rates from settings
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.models.parcel_category import ParcelCategory

CENT = Decimal("0.01")


def quantize_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Rates:
    base_rate: Decimal
    per_pound_rate: Decimal
    category_name: Optional[str] = None


class PricingResolver:

    @staticmethod
    def default_rates() -> Rates:
        return Rates(
            base_rate=settings.default_base_rate,
            per_pound_rate=settings.default_per_pound_rate,
        )

    @staticmethod
    async def resolve_rates(db: AsyncSession, category_id: Optional[int]) -> Rates:
        """
        Rates for a category id. A missing category means default rates.
        """
        if category_id is None:
            return PricingResolver.default_rates()

        category = await db.get(ParcelCategory, category_id)
        if not category:
            return PricingResolver.default_rates()

        return Rates(
            base_rate=category.base_rate if category.base_rate is not None else settings.default_base_rate,
            per_pound_rate=(
                category.per_pound_rate if category.per_pound_rate is not None else settings.default_per_pound_rate
            ),
            category_name=category.name,
        )

    @staticmethod
    def compute_cost(rates: Rates, weight: Optional[Decimal]) -> Decimal:
        """base_rate + weight * per_pound_rate, a null weight counts as 0."""
        weight = Decimal(weight) if weight is not None else Decimal("0")
        return quantize_money(Decimal(rates.base_rate) + weight * Decimal(rates.per_pound_rate))
