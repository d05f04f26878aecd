from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, timezone
import logging
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from promo_engine.core.errors import CapacityExceededError, ConflictError, NotFoundError, ValidationError
from promo_engine.models.catalog import Category, Product
from promo_engine.models.coupon import Coupon
from promo_engine.schemas.coupon import CouponCreate, CouponUpdate
from promo_engine.services.discounts import validate_discount_rule


logger = logging.getLogger(__name__)


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def within_date_window(today: date) -> ColumnElement[bool]:
    return and_(
        or_(Coupon.start_date.is_(None), Coupon.start_date <= today),
        or_(Coupon.end_date.is_(None), Coupon.end_date >= today),
    )


def under_usage_cap() -> ColumnElement[bool]:
    return or_(Coupon.max_usage.is_(None), Coupon.times_used < Coupon.max_usage)


def available_clause(today: date) -> ColumnElement[bool]:
    """A coupon is available inside its date window AND under its usage cap."""
    return and_(within_date_window(today), under_usage_cap())


async def _categories_by_name(session: AsyncSession, names: Sequence[str]) -> list[Category]:
    if not names:
        return []
    return list((await session.execute(select(Category).where(Category.name.in_(names)))).scalars().all())


async def _products_by_id(session: AsyncSession, ids: Sequence[UUID]) -> list[Product]:
    if not ids:
        return []
    return list((await session.execute(select(Product).where(Product.id.in_(ids)))).scalars().all())


async def get_coupon_by_code(session: AsyncSession, code: str) -> Coupon | None:
    result = await session.execute(
        select(Coupon).where(Coupon.code == code).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_coupon(session: AsyncSession, payload: CouponCreate) -> Coupon:
    existing = (
        await session.execute(select(func.count()).select_from(Coupon).where(Coupon.code == payload.code))
    ).scalar_one()
    if int(existing):
        raise ConflictError("Coupon code already exists")

    coupon = Coupon(
        **payload.model_dump(exclude={"products", "categories"}),
        times_used=0,
        version=0,
    )
    # Unknown names and ids are skipped rather than rejected.
    coupon.categories = await _categories_by_name(session, payload.categories)
    coupon.products = await _products_by_id(session, payload.products)
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_created", extra={"coupon_id": str(coupon.id), "code": coupon.code})
    return coupon


async def list_coupons(session: AsyncSession) -> list[Coupon]:
    result = await session.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.code))
    return list(result.scalars().all())


async def get_coupon(session: AsyncSession, coupon_id: UUID) -> Coupon:
    coupon = await session.get(Coupon, coupon_id, populate_existing=True)
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


def _check_updated_state(coupon: Coupon, data: dict) -> None:
    """Validate the coupon as it would look after applying ``data``."""
    merged = Coupon(
        discount_type=data.get("discount_type", coupon.discount_type),
        discount_value=data.get("discount_value", coupon.discount_value),
        target=data.get("target", coupon.target),
        max_discount_amount=data.get("max_discount_amount", coupon.max_discount_amount),
    )
    validate_discount_rule(merged)

    start_date = data.get("start_date", coupon.start_date)
    end_date = data.get("end_date", coupon.end_date)
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must not precede start_date")

    max_usage = data.get("max_usage", coupon.max_usage)
    if max_usage is not None and max_usage < (coupon.times_used or 0):
        raise ValidationError("max_usage cannot be lower than the number of uses already taken")


async def update_coupon(session: AsyncSession, coupon_id: UUID, payload: CouponUpdate) -> Coupon:
    coupon = await get_coupon(session, coupon_id)
    read_version = coupon.version
    data = payload.model_dump(exclude_unset=True, exclude={"products", "categories"})
    _check_updated_state(coupon, data)

    result = await session.execute(
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.version == read_version)
        .values(**data, version=read_version + 1, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise ConflictError("Coupon was modified concurrently")

    if payload.categories is not None:
        coupon.categories = await _categories_by_name(session, payload.categories)
    if payload.products is not None:
        coupon.products = await _products_by_id(session, payload.products)
    await session.commit()
    return await get_coupon(session, coupon_id)


async def delete_coupon(session: AsyncSession, coupon_id: UUID) -> None:
    coupon = await get_coupon(session, coupon_id)
    await session.delete(coupon)
    await session.commit()
    logger.info("coupon_deleted", extra={"coupon_id": str(coupon_id)})


async def get_available_coupon(
    session: AsyncSession,
    *,
    code: str,
    held_coupon_id: UUID | None = None,
    today: date | None = None,
) -> Coupon:
    """Find a coupon that can be applied right now.

    Lookup is by exact, case-sensitive code inside the date window. A coupon
    at its cap is still returned when ``held_coupon_id`` says the order
    already holds one of its uses.
    """
    day = today or today_utc()
    result = await session.execute(
        select(Coupon)
        .where(Coupon.code == code, within_date_window(day))
        .execution_options(populate_existing=True)
    )
    coupon = result.scalar_one_or_none()
    if coupon is None:
        raise NotFoundError("Coupon not found or not available")
    if coupon.id != held_coupon_id and not coupon.has_capacity:
        raise CapacityExceededError("Coupon usage limit reached")
    return coupon
