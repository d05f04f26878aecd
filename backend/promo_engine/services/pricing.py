from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import Literal, Protocol


MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}


class PricedLine(Protocol):
    quantity: int

    @property
    def effective_unit_price(self) -> Decimal: ...


def quantize_money(value: Decimal, *, rounding: MoneyRounding = "half_up") -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding), ROUND_HALF_UP)
    return Decimal(value).quantize(MONEY_QUANT, rounding=mode)


def line_total(line: PricedLine) -> Decimal:
    return line.effective_unit_price * int(line.quantity or 0)


def lines_total(lines: Iterable[PricedLine]) -> Decimal:
    return sum((line_total(line) for line in lines), start=ZERO)
