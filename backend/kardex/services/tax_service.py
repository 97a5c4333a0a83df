# Overview: Pure price/tax arithmetic used by the draft writer (no database access).

"""
Cost & tax resolution.

Tax-inclusive decomposition of a gross line amount with taxes t1..tn:

    rate_sum = sum(rate_i)
    net      = gross / (1 + rate_sum / 100)
    tax_i    = (gross - net) * rate_i / rate_sum

Tax-exclusive:

    net   = gross
    tax_i = net * rate_i / 100

Only enabled, non-fixed taxes with rate > 0 take part. Fixed-amount taxes are
not apportioned here.

Amounts are rounded half-up to cents; in the inclusive case the last tax row
absorbs the rounding remainder so that net + sum(tax_i) == gross exactly.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..models import StockDirection
from ..numbers import ZERO, money, to_decimal, unit_amount


DISCOUNT_FLAT = 0
DISCOUNT_PERCENTAGE = 1

HUNDRED = Decimal("100")

_LIQUIDATION_KEYS = ("liquidation", "config")


@dataclass(frozen=True)
class TaxRate:
    tax_id: int
    rate: Decimal


@dataclass
class LineTaxBreakdown:
    gross: Decimal
    net: Decimal
    total_tax: Decimal
    amounts: list[tuple[int, Decimal]] = field(default_factory=list)

    @property
    def tax_by_id(self) -> dict[int, Decimal]:
        return dict(self.amounts)


def _read_iva_flag(payload: Any) -> Optional[bool]:
    if not isinstance(payload, dict):
        return None
    flag = payload.get("ivaIncludedInCost")
    if isinstance(flag, bool):
        return flag
    for key in _LIQUIDATION_KEYS:
        nested = payload.get(key)
        if isinstance(nested, dict) and isinstance(nested.get("ivaIncludedInCost"), bool):
            return nested["ivaIncludedInCost"]
    return None


def prices_include_tax(stock_direction: Any, internal_note: Optional[str]) -> bool:
    """
    Whether line prices on a document carry tax.

    OUT (sales): always. IN (purchases): the liquidation tool's
    `ivaIncludedInCost` flag from the JSON note, True when absent or
    unparseable. NONE: True.
    """
    direction = StockDirection.coerce(stock_direction)
    if direction != StockDirection.IN:
        return True
    if not internal_note:
        return True
    try:
        payload = json.loads(internal_note)
    except (TypeError, ValueError):
        return True
    flag = _read_iva_flag(payload)
    return True if flag is None else flag


def percentage_taxes(taxes: Iterable[Any]) -> list[TaxRate]:
    """
    Filter Tax rows (or tax-like objects) down to the ones that are
    apportioned as a percentage of the line amount.
    """
    rates: list[TaxRate] = []
    seen: set[int] = set()
    for tax in taxes:
        if tax is None or tax.id in seen:
            continue
        if not getattr(tax, "is_enabled", True) or getattr(tax, "is_fixed", False):
            continue
        rate = to_decimal(getattr(tax, "rate", None))
        if rate <= ZERO:
            continue
        seen.add(tax.id)
        rates.append(TaxRate(tax_id=tax.id, rate=rate))
    return rates


def decompose_line(gross: Any, taxes: list[TaxRate], include_tax: bool) -> LineTaxBreakdown:
    gross_amount = money(gross)
    if not taxes:
        return LineTaxBreakdown(gross=gross_amount, net=gross_amount, total_tax=ZERO)

    rate_sum = sum((t.rate for t in taxes), ZERO)

    if include_tax:
        divisor = Decimal("1") + rate_sum / HUNDRED
        net = money(gross_amount / divisor)
        total_tax = gross_amount - net

        amounts: list[tuple[int, Decimal]] = []
        allocated = ZERO
        for index, tax in enumerate(taxes):
            if index == len(taxes) - 1:
                share = total_tax - allocated
            else:
                share = money(total_tax * tax.rate / rate_sum)
                allocated += share
            amounts.append((tax.tax_id, share))
        return LineTaxBreakdown(gross=gross_amount, net=net, total_tax=total_tax, amounts=amounts)

    amounts = [(t.tax_id, money(gross_amount * t.rate / HUNDRED)) for t in taxes]
    total_tax = sum((amount for _, amount in amounts), ZERO)
    return LineTaxBreakdown(gross=gross_amount, net=gross_amount, total_tax=total_tax, amounts=amounts)


def apply_discount(amount: Any, discount: Any, discount_type: Optional[int]) -> Decimal:
    """
    Apply a flat (type 0) or percentage (any other type) discount.

    A missing or non-positive discount leaves the amount untouched.
    """
    base = to_decimal(amount)
    value = to_decimal(discount)
    if value <= ZERO:
        return base
    if (discount_type or DISCOUNT_FLAT) == DISCOUNT_FLAT:
        return base - value
    return base * (Decimal("1") - value / HUNDRED)


def net_unit_price(price: Any, taxes: list[TaxRate], include_tax: bool) -> Decimal:
    """Net-of-tax unit price, kept at 4 places for small unit amounts."""
    unit = to_decimal(price)
    if not taxes or not include_tax:
        return unit
    rate_sum = sum((t.rate for t in taxes), ZERO)
    return unit_amount(unit / (Decimal("1") + rate_sum / HUNDRED))
