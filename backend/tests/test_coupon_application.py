import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from promo_engine.core.errors import CapacityExceededError, ConflictError, NotFoundError
from promo_engine.models import CouponTarget, DiscountType
from promo_engine.services.coupon_application import apply_coupon
from promo_engine.services.coupons import get_coupon, today_utc
from promo_engine.services.orders import get_order


async def seed_order(session, factory, *, price: str = "50.00"):
    shorts = await factory.category(session, "shorts")
    product = await factory.product(session, "Shorts", categories=[shorts])
    return await factory.order(session, (product, price, 1))


def test_apply_percentage_coupon_to_whole_order(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            order = await seed_order(session, factory)
            coupon = await factory.coupon(session, "TENOFF", max_usage=10)

            order = await apply_coupon(session, order, "TENOFF")
            assert order.coupon_id == coupon.id
            assert order.final_total == Decimal("45.00")
            assert order.version == 1

        async with session_factory() as session:
            stored = await get_coupon(session, coupon.id)
            assert (stored.times_used, stored.version) == (1, 1)

    asyncio.run(run_flow())


def test_apply_single_target_coupon(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            shorts = await factory.category(session, "shorts")
            cheap = await factory.product(session, "Shorts", categories=[shorts])
            shirt = await factory.product(session, "Shirt")
            order = await factory.order(session, (cheap, "10.00", 1), (shirt, "20.00", 2))
            await factory.coupon(session, "SHORTS10", target=CouponTarget.single, categories=[shorts])

            order = await apply_coupon(session, order, "SHORTS10")
            assert order.sub_total == Decimal("50.00")
            assert order.final_total == Decimal("49.00")

    asyncio.run(run_flow())


def test_switching_coupons_releases_the_previous_one(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            order = await seed_order(session, factory)
            first = await factory.coupon(session, "FIRST", max_usage=5)
            second = await factory.coupon(
                session, "SECOND", discount_type=DiscountType.fixed, discount_value=Decimal("20"), max_usage=5
            )

            order = await apply_coupon(session, order, "FIRST")
            order = await apply_coupon(session, order, "SECOND")
            assert order.coupon_id == second.id
            assert order.final_total == Decimal("30.00")

            assert (await get_coupon(session, first.id)).times_used == 0
            assert (await get_coupon(session, second.id)).times_used == 1

            # Re-applying the active coupon does not count it twice.
            order = await apply_coupon(session, order, "SECOND")
            assert (await get_coupon(session, second.id)).times_used == 1
            assert order.version == 3

    asyncio.run(run_flow())


def test_coupon_at_cap_is_rejected(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            order = await seed_order(session, factory)
            coupon = await factory.coupon(session, "FULL", max_usage=10, times_used=10)
            order_id, coupon_id = order.id, coupon.id

            with pytest.raises(CapacityExceededError):
                await apply_coupon(session, order, "FULL")

        async with session_factory() as session:
            assert (await get_coupon(session, coupon_id)).times_used == 10
            assert (await get_order(session, order_id)).coupon_id is None

    asyncio.run(run_flow())


def test_missing_or_expired_code_is_not_found_and_mutates_nothing(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            order = await seed_order(session, factory)
            active = await factory.coupon(session, "ACTIVE", max_usage=5)
            expired = await factory.coupon(session, "OLD", end_date=today_utc() - timedelta(days=1))
            await factory.coupon(session, "LATER", start_date=today_utc() + timedelta(days=3))
            order = await apply_coupon(session, order, "ACTIVE")
            order_id = order.id

        for code in ("NOPE", "OLD", "LATER", "active"):
            async with session_factory() as session:
                order = await get_order(session, order_id)
                with pytest.raises(NotFoundError):
                    await apply_coupon(session, order, code)

        async with session_factory() as session:
            order = await get_order(session, order_id)
            assert order.coupon_id == active.id
            assert order.final_total == Decimal("45.00")
            assert order.version == 1
            assert (await get_coupon(session, active.id)).times_used == 1
            assert (await get_coupon(session, expired.id)).times_used == 0

    asyncio.run(run_flow())


def test_stale_order_version_is_a_conflict(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            order = await seed_order(session, factory)
            first = await factory.coupon(session, "FIRST")
            second = await factory.coupon(session, "SECOND")
            order_id = order.id

        async with session_factory() as stale_session, session_factory() as fresh_session:
            stale_order = await get_order(stale_session, order_id)
            fresh_order = await get_order(fresh_session, order_id)
            await apply_coupon(fresh_session, fresh_order, "FIRST")

            with pytest.raises(ConflictError):
                await apply_coupon(stale_session, stale_order, "SECOND")

        async with session_factory() as session:
            order = await get_order(session, order_id)
            assert order.coupon_id == first.id
            assert order.version == 1
            assert (await get_coupon(session, first.id)).times_used == 1
            assert (await get_coupon(session, second.id)).times_used == 0

    asyncio.run(run_flow())


def test_conflicting_order_save_rolls_back_release_and_reservation(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            order = await seed_order(session, factory)
            held = await factory.coupon(session, "HELD", max_usage=5)
            other = await factory.coupon(session, "OTHER", max_usage=5)
            third = await factory.coupon(session, "THIRD", max_usage=5)
            order = await apply_coupon(session, order, "HELD")
            order_id, held_id, other_id, third_id = order.id, held.id, other.id, third.id

        async with session_factory() as stale_session, session_factory() as fresh_session:
            stale_order = await get_order(stale_session, order_id)
            fresh_order = await get_order(fresh_session, order_id)
            await apply_coupon(fresh_session, fresh_order, "OTHER")

            # Release of HELD and reservation of THIRD happen, then the order save loses.
            with pytest.raises(ConflictError):
                await apply_coupon(stale_session, stale_order, "THIRD")

        async with session_factory() as session:
            order = await get_order(session, order_id)
            assert order.coupon_id == other_id
            assert order.version == 2
            held_after = await get_coupon(session, held_id)
            assert (held_after.times_used, held_after.version) == (0, 2)
            assert (await get_coupon(session, other_id)).times_used == 1
            third_after = await get_coupon(session, third_id)
            assert (third_after.times_used, third_after.version) == (0, 0)

    asyncio.run(run_flow())


def test_concurrent_orders_race_for_a_capped_coupon(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            product = await factory.product(session, "Mug")
            order_ids = [(await factory.order(session, (product, "12.00", 1))).id for _ in range(4)]
            coupon = await factory.coupon(session, "RUSH", max_usage=10)

        async def apply_in_own_session(order_id) -> str:
            async with session_factory() as session:
                order = await get_order(session, order_id)
                try:
                    await apply_coupon(session, order, "RUSH")
                except (ConflictError, CapacityExceededError) as exc:
                    return exc.code
                return "ok"

        outcomes = await asyncio.gather(*(apply_in_own_session(order_id) for order_id in order_ids))

        async with session_factory() as session:
            stored = await get_coupon(session, coupon.id)
            holders = [order_id for order_id in order_ids if (await get_order(session, order_id)).coupon_id == coupon.id]
        assert outcomes.count("ok") >= 1
        assert stored.times_used == outcomes.count("ok") == len(holders)
        assert stored.times_used <= 10
        assert set(outcomes) <= {"ok", "conflict", "capacity_exceeded"}

    asyncio.run(run_flow())


def test_order_can_be_reloaded_in_the_same_session_after_a_rejection(session_factory, factory) -> None:
    async def run_flow() -> None:
        async with session_factory() as session:
            order = await seed_order(session, factory)
            await factory.coupon(session, "GOOD")
            order_id = order.id

            with pytest.raises(NotFoundError):
                await apply_coupon(session, order, "MISSING")

            order = await get_order(session, order_id)
            assert (order.coupon_id, order.version) == (None, 0)
            order = await apply_coupon(session, order, "GOOD")
            assert order.final_total == Decimal("45.00")

    asyncio.run(run_flow())
