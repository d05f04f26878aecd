"""Discount calculation.

Everything here is pure: callers resolve category ancestry up front
(see :mod:`promo_engine.services.categories`) and pass it in, so the same
function backs both coupon application and recommendations.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from decimal import Decimal, InvalidOperation
from uuid import UUID

from promo_engine.core.errors import ValidationError
from promo_engine.models.coupon import Coupon, CouponTarget, DiscountType
from promo_engine.models.order import Order, OrderItem
from promo_engine.services.pricing import ZERO, MoneyRounding, line_total, quantize_money


CategoryNames = Mapping[UUID, Collection[str]]

HUNDRED = Decimal("100")


def _as_decimal(value: object, *, field: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be numeric") from exc


def validate_discount_rule(coupon: Coupon) -> None:
    """Reject rules that slipped past request validation."""
    try:
        discount_type = DiscountType(coupon.discount_type)
        CouponTarget(coupon.target)
    except ValueError as exc:
        raise ValidationError("Unknown discount type or target") from exc

    if coupon.discount_value is None:
        raise ValidationError("discount_value is required")
    value = _as_decimal(coupon.discount_value, field="discount_value")
    if value < 0:
        raise ValidationError("discount_value must not be negative")
    if discount_type == DiscountType.percentage and value > HUNDRED:
        raise ValidationError("Percentage discounts cannot exceed 100")
    if coupon.max_discount_amount is not None:
        if _as_decimal(coupon.max_discount_amount, field="max_discount_amount") < 0:
            raise ValidationError("max_discount_amount must not be negative")


def item_is_eligible(item: OrderItem, coupon: Coupon, *, category_names: CategoryNames | None = None) -> bool:
    """Product listed on the coupon, or any ancestor category listed (union of both)."""
    if CouponTarget(coupon.target) == CouponTarget.all:
        return True
    if item.product_id in {product.id for product in coupon.products or []}:
        return True
    coupon_category_names = {category.name for category in coupon.categories or []}
    if not coupon_category_names or not category_names:
        return False
    return not coupon_category_names.isdisjoint(category_names.get(item.product_id, ()))


def eligible_base(order: Order, coupon: Coupon, *, category_names: CategoryNames | None = None) -> Decimal:
    if CouponTarget(coupon.target) == CouponTarget.all:
        return Decimal(order.sub_total)
    return sum(
        (line_total(item) for item in order.items if item_is_eligible(item, coupon, category_names=category_names)),
        start=ZERO,
    )


def discount_for_base(base: Decimal, coupon: Coupon) -> Decimal:
    value = Decimal(coupon.discount_value)
    if DiscountType(coupon.discount_type) == DiscountType.percentage:
        discount = base * value / HUNDRED
    else:
        discount = value
        if CouponTarget(coupon.target) == CouponTarget.single:
            discount = min(discount, base)
    if coupon.max_discount_amount is not None:
        discount = min(discount, Decimal(coupon.max_discount_amount))
    return max(discount, ZERO)


def compute_final_total(
    order: Order,
    coupon: Coupon | None,
    *,
    category_names: CategoryNames | None = None,
    rounding: MoneyRounding = "half_up",
) -> Decimal:
    sub_total = Decimal(order.sub_total or 0)
    if coupon is None:
        return quantize_money(sub_total, rounding=rounding)

    validate_discount_rule(coupon)
    base = eligible_base(order, coupon, category_names=category_names)
    final_total = sub_total - discount_for_base(base, coupon)
    if final_total < 0:
        final_total = ZERO
    return quantize_money(final_total, rounding=rounding)
