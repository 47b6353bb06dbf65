from __future__ import annotations

from datetime import datetime
from decimal import Decimal

_CENT = Decimal("0.01")


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_currency(value: Decimal) -> str:
    cents = value.quantize(_CENT)
    return f"{cents:,.2f}"


def format_eur(value: Decimal) -> str:
    return f"{format_currency(value)} EUR"


def format_rate(rate: Decimal) -> str:
    """0.22 -> '22%', 0.282051... -> '28.21%'."""
    percent = (rate * 100).quantize(_CENT).normalize()
    return f"{format_decimal(percent)}%"


def format_date(value: datetime) -> str:
    # Estonian forms use day.month.year.
    return value.strftime("%d.%m.%Y")
