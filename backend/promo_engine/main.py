import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from promo_engine.api.v1.routes import api_router
from promo_engine.core.config import settings
from promo_engine.core.errors import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    PromoEngineError,
    StorageUnavailableError,
    ValidationError,
)
from promo_engine.core.logging_config import configure_logging, request_id_ctx_var
from promo_engine.schemas.error import ErrorResponse


_STATUS_BY_ERROR: list[tuple[type[PromoEngineError], int, str | None]] = [
    (NotFoundError, 404, None),
    # Callers only learn that they should try again; version tokens stay internal.
    (CapacityExceededError, 409, "Coupon is no longer available, please try again"),
    (ConflictError, 409, "The order changed while applying the coupon, please try again"),
    (ValidationError, 400, None),
    (StorageUnavailableError, 503, "Service temporarily unavailable, please try again"),
]


def _error_status(exc: PromoEngineError) -> tuple[int, str]:
    for error_type, status_code, public_detail in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code, public_detail or exc.detail
    return 400, exc.detail


def get_application() -> FastAPI:
    configure_logging(settings.log_json, settings.log_level)
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=[
            {"name": "coupons", "description": "Coupon administration"},
            {"name": "orders", "description": "Applying and recommending coupons for orders"},
        ],
    )
    app.include_router(api_router, prefix="/api/v1")

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        token = request_id_ctx_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.exception_handler(PromoEngineError)
    async def promo_engine_exception_handler(request: Request, exc: PromoEngineError):
        status_code, detail = _error_status(exc)
        payload = ErrorResponse(detail=detail, code=exc.code)
        return JSONResponse(status_code=status_code, content=payload.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    return app


app = get_application()
