from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.config import settings
from promo_engine.models.catalog import Category, Product
from promo_engine.models.coupon import Coupon, CouponTarget
from promo_engine.models.order import Order
from promo_engine.services.categories import category_names_by_product
from promo_engine.services.coupons import available_clause, today_utc
from promo_engine.services.discounts import compute_final_total


@dataclass(frozen=True)
class CouponRecommendation:
    coupon: Coupon
    sub_total: Decimal
    final_total: Decimal

    @property
    def savings(self) -> Decimal:
        return self.sub_total - self.final_total


def _ranking_key(recommendation: CouponRecommendation) -> tuple:
    end_date = recommendation.coupon.end_date
    return (
        -recommendation.savings,
        end_date is None,
        end_date or date.max,
        recommendation.coupon.code,
    )


async def recommend_coupons(
    session: AsyncSession, order: Order, *, today: date | None = None
) -> list[CouponRecommendation]:
    """Available coupons that apply to the order, best savings first.

    Read-only: nothing is reserved.
    """
    product_ids = list(dict.fromkeys(item.product_id for item in order.items))
    category_names = await category_names_by_product(session, product_ids)
    all_names = set().union(*category_names.values()) if category_names else set()
    sub_total = Decimal(order.sub_total or 0)

    scope = [Coupon.target == CouponTarget.all]
    if product_ids:
        scope.append(Coupon.products.any(Product.id.in_(product_ids)))
    if all_names:
        scope.append(Coupon.categories.any(Category.name.in_(all_names)))

    result = await session.execute(
        select(Coupon)
        .where(
            available_clause(today or today_utc()),
            or_(Coupon.minimum_order_amount.is_(None), Coupon.minimum_order_amount <= sub_total),
            or_(*scope),
        )
        .execution_options(populate_existing=True)
    )
    coupons = result.scalars().unique().all()

    recommendations = [
        CouponRecommendation(
            coupon=coupon,
            sub_total=sub_total,
            final_total=compute_final_total(
                order, coupon, category_names=category_names, rounding=settings.money_rounding
            ),
        )
        for coupon in coupons
    ]
    recommendations.sort(key=_ranking_key)
    return recommendations
