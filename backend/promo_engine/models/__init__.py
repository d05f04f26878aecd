from promo_engine.models.catalog import Category, Product, product_categories
from promo_engine.models.coupon import Coupon, CouponTarget, DiscountType, coupon_categories, coupon_products
from promo_engine.models.order import Order, OrderItem

__all__ = [
    "Category",
    "Product",
    "product_categories",
    "Coupon",
    "CouponTarget",
    "DiscountType",
    "coupon_categories",
    "coupon_products",
    "Order",
    "OrderItem",
]
