from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.errors import NotFoundError
from promo_engine.models.order import Order, OrderItem
from promo_engine.services.pricing import lines_total, quantize_money


@dataclass(frozen=True)
class OrderLine:
    product_id: UUID
    price_at_purchase: Decimal
    quantity: int = 1
    discount_price_at_purchase: Decimal | None = None


def order_subtotal(items: Iterable[OrderItem]) -> Decimal:
    return quantize_money(lines_total(items))


async def get_order(session: AsyncSession, order_id: UUID) -> Order:
    result = await session.execute(
        select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("Order not found")
    return order


async def create_order(session: AsyncSession, lines: Iterable[OrderLine]) -> Order:
    items = [
        OrderItem(
            product_id=line.product_id,
            position=position,
            price_at_purchase=line.price_at_purchase,
            discount_price_at_purchase=line.discount_price_at_purchase,
            quantity=line.quantity,
        )
        for position, line in enumerate(lines)
    ]
    sub_total = order_subtotal(items)
    order = Order(sub_total=sub_total, final_total=sub_total, version=0, items=items)
    session.add(order)
    await session.commit()
    return await get_order(session, order.id)
