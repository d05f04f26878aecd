import argparse
import asyncio
import json
import uuid
from typing import Any

from promo_engine.core.config import settings
from promo_engine.core.errors import PromoEngineError
from promo_engine.core.logging_config import configure_logging
from promo_engine.db import session as db_session
from promo_engine.services import coupon_application, coupon_recommendations
from promo_engine.services import orders as orders_service


def _parse_uuid(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(raw).strip())
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid id: {raw}") from exc


def _money(value: Any) -> str | None:
    return str(value) if value is not None else None


async def apply_coupon_command(order_id: uuid.UUID, code: str) -> dict[str, Any]:
    async with db_session.SessionLocal() as session:
        order = await orders_service.get_order(session, order_id)
        order = await coupon_application.apply_coupon(session, order, code)
        return {
            "order_id": str(order.id),
            "coupon_id": str(order.coupon_id) if order.coupon_id else None,
            "sub_total": _money(order.sub_total),
            "final_total": _money(order.final_total),
        }


async def recommend_command(order_id: uuid.UUID) -> list[dict[str, Any]]:
    async with db_session.SessionLocal() as session:
        order = await orders_service.get_order(session, order_id)
        recommendations = await coupon_recommendations.recommend_coupons(session, order)
        return [
            {
                "code": item.coupon.code,
                "sub_total": _money(item.sub_total),
                "final_total": _money(item.final_total),
                "savings": _money(item.savings),
            }
            for item in recommendations
        ]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Coupon engine utilities")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables")

    apply_cmd = subparsers.add_parser("apply-coupon", help="Apply a coupon code to an order")
    apply_cmd.add_argument("order_id", type=_parse_uuid)
    apply_cmd.add_argument("code")

    recommend_cmd = subparsers.add_parser("recommend", help="List coupons applicable to an order")
    recommend_cmd.add_argument("order_id", type=_parse_uuid)
    return parser


def _run_cli_command(args: argparse.Namespace) -> Any:
    if args.command == "init-db":
        asyncio.run(db_session.init_models())
        return {"status": "ok"}
    if args.command == "apply-coupon":
        return asyncio.run(apply_coupon_command(args.order_id, args.code))
    if args.command == "recommend":
        return asyncio.run(recommend_command(args.order_id))
    raise SystemExit(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    configure_logging(settings.log_json, settings.log_level)
    args = _build_parser().parse_args(argv)
    try:
        result = _run_cli_command(args)
    except PromoEngineError as exc:
        raise SystemExit(f"{exc.code}: {exc.detail}") from exc
    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
