from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promo_engine.core.errors import NotFoundError
from promo_engine.models.catalog import Category, Product, product_categories


async def _category_row(session: AsyncSession, category_id: UUID):
    return (
        await session.execute(select(Category.name, Category.parent_id).where(Category.id == category_id))
    ).one_or_none()


async def ancestor_category_names(session: AsyncSession, product_id: UUID) -> AsyncIterator[str]:
    """Yield the names of the product's categories and all of their ancestors, once each.

    Every call walks the tree again; nothing is cached between iterations.
    Raises NotFoundError on first iteration when the product does not exist.
    """
    found = (await session.execute(select(Product.id).where(Product.id == product_id))).scalar_one_or_none()
    if found is None:
        raise NotFoundError("Product not found")
    direct_ids = (
        (
            await session.execute(
                select(product_categories.c.category_id).where(product_categories.c.product_id == product_id)
            )
        )
        .scalars()
        .all()
    )

    seen_names: set[str] = set()
    for category_id in direct_ids:
        visited: set[UUID] = set()
        current: UUID | None = category_id
        while current is not None and current not in visited:
            visited.add(current)
            row = await _category_row(session, current)
            if row is None:
                break
            if row.name not in seen_names:
                seen_names.add(row.name)
                yield row.name
            current = row.parent_id


async def category_names_by_product(session: AsyncSession, product_ids: Iterable[UUID]) -> dict[UUID, frozenset[str]]:
    names: dict[UUID, frozenset[str]] = {}
    for product_id in dict.fromkeys(product_ids):
        names[product_id] = frozenset([name async for name in ancestor_category_names(session, product_id)])
    return names


async def products_in_category_tree(session: AsyncSession, category_name: str) -> list[Product]:
    """Products assigned to the named category or to any of its descendants."""
    root_id = (await session.execute(select(Category.id).where(Category.name == category_name))).scalar_one_or_none()
    if root_id is None:
        raise NotFoundError("Category not found")

    tree_ids: set[UUID] = {root_id}
    frontier = [root_id]
    while frontier:
        children = (
            (await session.execute(select(Category.id).where(Category.parent_id.in_(frontier)))).scalars().all()
        )
        frontier = [child for child in children if child not in tree_ids]
        tree_ids.update(frontier)

    result = await session.execute(
        select(Product)
        .join(product_categories, product_categories.c.product_id == Product.id)
        .where(product_categories.c.category_id.in_(tree_ids))
        .order_by(Product.name)
    )
    return list(result.scalars().unique().all())
