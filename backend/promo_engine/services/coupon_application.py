from __future__ import annotations

from datetime import date
from decimal import Decimal
import logging
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.config import settings
from promo_engine.core.errors import ConflictError, PromoEngineError, StorageUnavailableError
from promo_engine.models.order import Order
from promo_engine.services import coupon_ledger
from promo_engine.services import coupons as coupons_service
from promo_engine.services.categories import category_names_by_product
from promo_engine.services.discounts import compute_final_total


logger = logging.getLogger(__name__)


async def _save_order(
    session: AsyncSession,
    order_id: UUID,
    *,
    expected_version: int,
    coupon_id: UUID,
    final_total: Decimal,
) -> None:
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.version == expected_version)
        .values(coupon_id=coupon_id, final_total=final_total, version=expected_version + 1, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError("Order was modified concurrently")


async def apply_coupon(session: AsyncSession, order: Order, code: str, *, today: date | None = None) -> Order:
    """Attach the coupon with ``code`` to ``order`` and recompute its final total.

    The previous coupon (if different) is released, the new one reserved and
    the order saved in a single transaction; every write is keyed on the
    version read beforehand. On any failure the transaction is rolled back and
    the error re-raised: NotFoundError, CapacityExceededError and
    ConflictError are final for this attempt, StorageUnavailableError is
    transient. Retrying is up to the caller.

    ``order`` must be loaded with its items (see services.orders.get_order).
    The rollback expires every instance held by ``session``, ``order``
    included; after a failure, read what you need from ids captured
    beforehand or reload through ``get_order``.
    """
    order_id = order.id
    read_version = order.version
    previous_coupon_id = order.coupon_id
    committed = False
    try:
        coupon = await coupons_service.get_available_coupon(
            session, code=code, held_coupon_id=previous_coupon_id, today=today
        )
        coupon_id = coupon.id
        coupon_version = coupon.version

        category_names = await category_names_by_product(session, [item.product_id for item in order.items])
        final_total = compute_final_total(
            order, coupon, category_names=category_names, rounding=settings.money_rounding
        )

        if previous_coupon_id != coupon_id:
            if previous_coupon_id is not None:
                await coupon_ledger.release(session, previous_coupon_id)
            await coupon_ledger.try_reserve(session, coupon_id, expected_version=coupon_version)

        await _save_order(
            session, order_id, expected_version=read_version, coupon_id=coupon_id, final_total=final_total
        )
        await session.commit()
        committed = True
    except PromoEngineError as exc:
        logger.info(
            "coupon_application_rejected",
            extra={"order_id": str(order_id), "code": code, "reason": exc.code},
        )
        raise
    except OperationalError as exc:
        logger.warning("coupon_application_storage_error", extra={"order_id": str(order_id), "code": code})
        raise StorageUnavailableError() from exc
    finally:
        if not committed:
            await session.rollback()

    await session.refresh(order)
    logger.info(
        "coupon_applied",
        extra={
            "order_id": str(order_id),
            "coupon_id": str(coupon_id),
            "previous_coupon_id": str(previous_coupon_id) if previous_coupon_id else None,
            "final_total": str(final_total),
        },
    )
    return order
