"""Usage counter for coupons.

This module is the only writer of ``Coupon.times_used``. Each call is one
version-conditioned ``UPDATE``; a writer that lost the race gets a
``ConflictError`` and nothing is overwritten. Calls never commit: the caller
owns the transaction and decides whether to retry.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.errors import CapacityExceededError, ConflictError, NotFoundError
from promo_engine.models.coupon import Coupon


logger = logging.getLogger(__name__)


async def _read_usage(session: AsyncSession, coupon_id: UUID):
    row = (
        await session.execute(
            select(Coupon.times_used, Coupon.max_usage, Coupon.version).where(Coupon.id == coupon_id)
        )
    ).one_or_none()
    if row is None:
        raise NotFoundError("Coupon not found")
    return row


async def _conditional_write(session: AsyncSession, coupon_id: UUID, *, expected_version: int, times_used: int) -> None:
    result = await session.execute(
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.version == expected_version)
        .values(times_used=times_used, version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info(
            "coupon_usage_conflict",
            extra={"coupon_id": str(coupon_id), "expected_version": expected_version},
        )
        raise ConflictError("Coupon was modified concurrently")


async def _reload(session: AsyncSession, coupon_id: UUID) -> Coupon:
    result = await session.execute(
        select(Coupon).where(Coupon.id == coupon_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def try_reserve(session: AsyncSession, coupon_id: UUID, *, expected_version: int | None = None) -> Coupon:
    """Take one use of the coupon if capacity remains.

    ``expected_version`` pins the write to a version the caller read earlier;
    without it the current row is read first.
    """
    row = await _read_usage(session, coupon_id)
    if expected_version is not None and row.version != expected_version:
        raise ConflictError("Coupon was modified concurrently")
    if row.max_usage is not None and row.times_used >= row.max_usage:
        raise CapacityExceededError("Coupon usage limit reached")

    await _conditional_write(session, coupon_id, expected_version=row.version, times_used=row.times_used + 1)
    logger.info("coupon_reserved", extra={"coupon_id": str(coupon_id), "times_used": row.times_used + 1})
    return await _reload(session, coupon_id)


async def release(session: AsyncSession, coupon_id: UUID) -> Coupon:
    """Give back one use; the counter never drops below zero."""
    row = await _read_usage(session, coupon_id)
    times_used = max(int(row.times_used or 0) - 1, 0)
    await _conditional_write(session, coupon_id, expected_version=row.version, times_used=times_used)
    logger.info("coupon_released", extra={"coupon_id": str(coupon_id), "times_used": times_used})
    return await _reload(session, coupon_id)
