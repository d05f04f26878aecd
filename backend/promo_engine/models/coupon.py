import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Table,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from promo_engine.db.base import Base
from promo_engine.models.catalog import Category, Product


class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class CouponTarget(str, enum.Enum):
    all = "all"
    single = "single"


coupon_products = Table(
    "coupon_products",
    Base.metadata,
    Column("coupon_id", UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", UUID(as_uuid=True), ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)

coupon_categories = Table(
    "coupon_categories",
    Base.metadata,
    Column("coupon_id", UUID(as_uuid=True), ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", UUID(as_uuid=True), ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("times_used >= 0", name="ck_coupons_times_used_non_negative"),
        CheckConstraint("max_usage IS NULL OR times_used <= max_usage", name="ck_coupons_times_used_within_cap"),
        CheckConstraint("discount_value >= 0", name="ck_coupons_discount_value_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    discount_type: Mapped[DiscountType] = mapped_column(
        Enum(DiscountType, native_enum=False),
        nullable=False,
        default=DiscountType.percentage,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    target: Mapped[CouponTarget] = mapped_column(
        Enum(CouponTarget, native_enum=False),
        nullable=False,
        default=CouponTarget.all,
    )
    minimum_order_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    max_discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    max_usage: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Mutated only by services.coupon_ledger.
    times_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    products: Mapped[list[Product]] = relationship("Product", secondary=coupon_products, lazy="selectin")
    categories: Mapped[list[Category]] = relationship("Category", secondary=coupon_categories, lazy="selectin")

    @property
    def has_capacity(self) -> bool:
        return self.max_usage is None or (self.times_used or 0) < self.max_usage
