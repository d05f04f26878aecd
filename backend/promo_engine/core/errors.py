class PromoEngineError(Exception):
    """Base class for errors raised by the promotion services."""

    code: str = "error"
    default_detail: str = "Promotion error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(PromoEngineError):
    """A coupon, product, category or order is absent, or the coupon is not available."""

    code = "not_found"
    default_detail = "Resource not found"


class CapacityExceededError(PromoEngineError):
    """The coupon's usage cap was reached at reservation time."""

    code = "capacity_exceeded"
    default_detail = "Coupon usage limit reached"


class ConflictError(PromoEngineError):
    """Another writer changed the record since it was read."""

    code = "conflict"
    default_detail = "The record was modified concurrently"


class ValidationError(PromoEngineError):
    """Malformed discount rule."""

    code = "validation_error"
    default_detail = "Invalid discount rule"


class StorageUnavailableError(PromoEngineError):
    """Transient storage failure (lock timeout, dropped connection)."""

    code = "storage_unavailable"
    default_detail = "Storage temporarily unavailable"
