from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


def format_npr(paisa: int) -> str:
    """`1234567` -> `"Rs. 12,345.67"`; thousands are grouped the plain western way."""
    sign = "-" if paisa < 0 else ""
    paisa_abs = abs(paisa)
    rupees = paisa_abs // 100
    rest = paisa_abs % 100
    return f"{sign}Rs. {rupees:,}.{rest:02d}"


def parse_npr_to_paisa(value: str | int | float | Decimal) -> int:
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, int):
        return value * 100
    try:
        raw = Decimal(str(value).replace("Rs.", "").replace(",", "").strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not raw.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return int((raw * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_cost_paisa(*, quantity: int, unit_cost_paisa: int) -> int:
    if unit_cost_paisa < 0:
        raise ValueError("unit_cost_paisa must be >= 0")
    return abs(quantity) * unit_cost_paisa
