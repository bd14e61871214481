from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from orderflow.config import Settings
from orderflow.models import Bill, CartLine

WHOLE = Decimal("1")


def _round(amount: Decimal) -> Decimal:
    return amount.quantize(WHOLE, rounding=ROUND_HALF_UP)


def delivery_fee(subtotal: Decimal, settings: Optional[Settings] = None) -> Decimal:
    settings = settings or Settings()
    if subtotal >= settings.free_delivery_threshold:
        return Decimal("0")
    if subtotal >= settings.reduced_fee_threshold:
        return settings.reduced_delivery_fee
    return settings.standard_delivery_fee


def compute_bill(lines: Iterable[CartLine], settings: Optional[Settings] = None) -> Bill:
    """
    subtotal -> tax (rounded on its own) -> tiered delivery fee -> grand total (rounded again).

    The total is rounded a second time on purpose so displayed amounts match
    what customers have already been shown, even though it is not strict
    decimal accounting.
    """
    settings = settings or Settings()
    lines = list(lines)
    if not lines:
        zero = Decimal("0")
        return Bill(subtotal=zero, tax=zero, delivery_fee=zero, grand_total=zero)

    subtotal = sum((line.line_total for line in lines), Decimal("0"))
    tax = _round(subtotal * settings.tax_rate)
    fee = delivery_fee(subtotal, settings)
    grand_total = _round(subtotal + tax + fee)
    return Bill(subtotal=subtotal, tax=tax, delivery_fee=fee, grand_total=grand_total)
