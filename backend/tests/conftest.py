import asyncio
import os
from collections.abc import Generator, Sequence
from decimal import Decimal
from pathlib import Path

import pytest

# Keep the module-level engine off the default PostgreSQL URL during tests.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./promo_engine_test.db")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from promo_engine.db.base import Base
from promo_engine.models import Category, Coupon, CouponTarget, DiscountType, Order, Product
from promo_engine.services.orders import OrderLine, create_order


class Factory:
    """Seeds rows for service-level tests."""

    async def category(self, session: AsyncSession, name: str, parent: Category | None = None) -> Category:
        category = Category(name=name, parent_id=parent.id if parent else None)
        session.add(category)
        await session.commit()
        return category

    async def product(
        self,
        session: AsyncSession,
        name: str,
        *,
        price: Decimal = Decimal("10.00"),
        categories: Sequence[Category] = (),
    ) -> Product:
        product = Product(name=name, base_price=price, categories=list(categories))
        session.add(product)
        await session.commit()
        return product

    async def coupon(
        self,
        session: AsyncSession,
        code: str,
        *,
        discount_type: DiscountType = DiscountType.percentage,
        discount_value: Decimal = Decimal("10"),
        target: CouponTarget = CouponTarget.all,
        products: Sequence[Product] = (),
        categories: Sequence[Category] = (),
        **fields,
    ) -> Coupon:
        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=discount_value,
            target=target,
            products=list(products),
            categories=list(categories),
            times_used=fields.pop("times_used", 0),
            version=0,
            **fields,
        )
        session.add(coupon)
        await session.commit()
        return coupon

    async def order(self, session: AsyncSession, *lines: tuple) -> Order:
        """Lines are (product, price, quantity) or (product, price, quantity, discount_price)."""
        return await create_order(
            session,
            [
                OrderLine(
                    product_id=line[0].id,
                    price_at_purchase=Decimal(line[1]),
                    quantity=line[2],
                    discount_price_at_purchase=Decimal(line[3]) if len(line) > 3 else None,
                )
                for line in lines
            ],
        )


@pytest.fixture
def factory() -> Factory:
    return Factory()


@pytest.fixture
def session_factory(tmp_path: Path) -> Generator[async_sessionmaker, None, None]:
    # File-backed so that concurrent sessions get their own connections.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'promo.db'}", future=True, poolclass=NullPool)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield SessionLocal
    asyncio.run(engine.dispose())
