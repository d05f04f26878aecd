from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.db.session import get_session
from promo_engine.schemas.coupon import CouponCreate, CouponRead, CouponUpdate
from promo_engine.services import coupons as coupons_service


router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(payload: CouponCreate, session: AsyncSession = Depends(get_session)) -> CouponRead:
    coupon = await coupons_service.create_coupon(session, payload)
    return CouponRead.model_validate(coupon)


@router.get("", response_model=list[CouponRead])
async def list_coupons(session: AsyncSession = Depends(get_session)) -> list[CouponRead]:
    return [CouponRead.model_validate(coupon) for coupon in await coupons_service.list_coupons(session)]


@router.get("/{coupon_id}", response_model=CouponRead)
async def get_coupon(coupon_id: UUID, session: AsyncSession = Depends(get_session)) -> CouponRead:
    return CouponRead.model_validate(await coupons_service.get_coupon(session, coupon_id))


@router.patch("/{coupon_id}", response_model=CouponRead)
async def update_coupon(
    coupon_id: UUID, payload: CouponUpdate, session: AsyncSession = Depends(get_session)
) -> CouponRead:
    return CouponRead.model_validate(await coupons_service.update_coupon(session, coupon_id, payload))


@router.delete("/{coupon_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_coupon(coupon_id: UUID, session: AsyncSession = Depends(get_session)) -> Response:
    await coupons_service.delete_coupon(session, coupon_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
