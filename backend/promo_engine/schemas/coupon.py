from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from promo_engine.models.coupon import CouponTarget, DiscountType


class CouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    target: CouponTarget
    minimum_order_amount: Decimal | None = None
    max_discount_amount: Decimal | None = None
    max_usage: int | None = None
    times_used: int
    start_date: date | None = None
    end_date: date | None = None
    product_ids: list[UUID] = Field(default_factory=list)
    category_names: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _collect_scopes(cls, data):
        if isinstance(data, dict):
            return data
        return {
            **{name: getattr(data, name, None) for name in cls.model_fields if hasattr(data, name)},
            "product_ids": [product.id for product in getattr(data, "products", None) or []],
            "category_names": sorted(category.name for category in getattr(data, "categories", None) or []),
        }


class CouponCreate(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    discount_type: DiscountType = DiscountType.percentage
    discount_value: Decimal = Field(ge=0)
    target: CouponTarget = CouponTarget.all
    minimum_order_amount: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    max_usage: int | None = Field(default=None, ge=0)
    start_date: date | None = None
    end_date: date | None = None
    products: list[UUID] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def _strip_code(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("code is required")
        return cleaned

    @model_validator(mode="after")
    def _check_rule(self) -> "CouponCreate":
        if self.discount_type == DiscountType.percentage and self.discount_value > 100:
            raise ValueError("Percentage discounts cannot exceed 100")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class CouponUpdate(BaseModel):
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(default=None, ge=0)
    target: CouponTarget | None = None
    minimum_order_amount: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    max_usage: int | None = Field(default=None, ge=0)
    start_date: date | None = None
    end_date: date | None = None
    products: list[UUID] | None = None
    categories: list[str] | None = None

    @model_validator(mode="after")
    def _check_rule(self) -> "CouponUpdate":
        for name in ("discount_type", "discount_value", "target"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        if self.discount_type == DiscountType.percentage and self.discount_value is not None:
            if self.discount_value > 100:
                raise ValueError("Percentage discounts cannot exceed 100")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class ApplyCouponRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)


class OrderTotalsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sub_total: Decimal
    final_total: Decimal
    coupon_id: UUID | None = None


class CouponRecommendationRead(BaseModel):
    coupon: CouponRead
    sub_total: Decimal
    final_total: Decimal
    savings: Decimal
