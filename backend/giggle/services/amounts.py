"""Money amounts as Decimal, never float."""
from __future__ import annotations
from decimal import Decimal, InvalidOperation
from typing import Optional

CENT = Decimal("0.01")
MAX_AMOUNT = Decimal("1e15")


def parse_amount(raw) -> Optional[Decimal]:
    """Positive finite amount with at most two decimals, else None."""
    try:
        value = Decimal(str(raw).strip().lstrip("$"))
        if not value.is_finite() or value <= 0 or value >= MAX_AMOUNT:
            return None
        cents = value.quantize(CENT)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if value != cents:
        return None
    return cents


def format_amount(value: Decimal) -> str:
    return f"{value:.2f}"
