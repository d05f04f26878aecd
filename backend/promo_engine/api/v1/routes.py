from fastapi import APIRouter

from promo_engine.api.v1 import coupons
from promo_engine.api.v1 import orders

api_router = APIRouter()

api_router.include_router(coupons.router)
api_router.include_router(orders.router)
