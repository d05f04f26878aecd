from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.db.session import get_session
from promo_engine.schemas.coupon import (
    ApplyCouponRequest,
    CouponRead,
    CouponRecommendationRead,
    OrderTotalsRead,
)
from promo_engine.services import coupon_application
from promo_engine.services import coupon_recommendations
from promo_engine.services import orders as orders_service


router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/{order_id}/coupon", response_model=OrderTotalsRead)
async def apply_order_coupon(
    order_id: UUID,
    payload: ApplyCouponRequest,
    session: AsyncSession = Depends(get_session),
) -> OrderTotalsRead:
    order = await orders_service.get_order(session, order_id)
    order = await coupon_application.apply_coupon(session, order, payload.code)
    return OrderTotalsRead.model_validate(order)


@router.get("/{order_id}/coupons/recommended", response_model=list[CouponRecommendationRead])
async def recommended_order_coupons(
    order_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> list[CouponRecommendationRead]:
    order = await orders_service.get_order(session, order_id)
    recommendations = await coupon_recommendations.recommend_coupons(session, order)
    return [
        CouponRecommendationRead(
            coupon=CouponRead.model_validate(item.coupon),
            sub_total=item.sub_total,
            final_total=item.final_total,
            savings=item.savings,
        )
        for item in recommendations
    ]
