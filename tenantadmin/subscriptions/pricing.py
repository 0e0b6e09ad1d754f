"""
Pricing for a plan assignment or extension.

All arithmetic is done on ``Decimal`` at full precision. Rounding to the
currency's two decimals is a presentation concern and happens only in
:func:`format_money`.

The calculation is derived state: it is never stored on the wizard and is
recomputed from the form state whenever it is needed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP
from decimal import Decimal
from decimal import InvalidOperation
from typing import TYPE_CHECKING

from tenantadmin.subscriptions.constants import BillingMethod

if TYPE_CHECKING:
    from tenantadmin.subscriptions.catalog import Plan

ZERO = Decimal(0)
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class PricingCalculation:
    base_price: Decimal
    tax_amount: Decimal
    total_price: Decimal
    currency: str
    remaining_amount: Decimal | None = None

    def is_covered_by(self, paid_amount: Decimal | None) -> bool:
        """True when ``paid_amount`` settles the whole total."""
        return paid_amount is not None and paid_amount >= self.total_price


def to_decimal(value) -> Decimal | None:
    """
    Coerce user or API input to ``Decimal``.

    Floats go through ``str`` so that ``0.2`` becomes ``Decimal("0.2")``
    rather than its binary expansion. Blank and unparsable values give None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def list_price(plan: Plan | None, billing_method: str | None) -> Decimal | None:
    """The plan's catalog price for ``billing_method``; CUSTOM has none."""
    if plan is None:
        return None
    if billing_method == BillingMethod.MONTHLY:
        return plan.monthly_price
    if billing_method == BillingMethod.YEARLY:
        return plan.yearly_price
    return None


def calculate_pricing(
    plan: Plan | None,
    billing_method: str | None,
    custom_price,
    tax_rate,
    paid_amount=None,
) -> PricingCalculation | None:
    """
    Derive base price, tax, total and remaining balance.

    Returns None when the price cannot be determined yet: no plan, or no
    custom price while the billing method offers no list price (unset or
    CUSTOM).
    """
    if plan is None:
        return None

    override = to_decimal(custom_price)
    if billing_method == BillingMethod.CUSTOM:
        base_price = override
    else:
        base_price = override if override is not None else list_price(
            plan,
            billing_method,
        )
    if base_price is None:
        return None

    rate = to_decimal(tax_rate) or ZERO
    tax_amount = base_price * rate
    total_price = base_price + tax_amount

    remaining = None
    paid = to_decimal(paid_amount)
    if paid is not None:
        remaining = max(ZERO, total_price - paid)

    return PricingCalculation(
        base_price=base_price,
        tax_amount=tax_amount,
        total_price=total_price,
        currency=plan.currency,
        remaining_amount=remaining,
    )


def format_money(amount, currency: str = "") -> str:
    """Round to cents for display, e.g. ``1 200.00 MAD``."""
    value = to_decimal(amount)
    if value is None:
        return "N/A"
    rounded = value.quantize(CENTS, rounding=ROUND_HALF_UP)
    text = f"{rounded:,.2f}".replace(",", " ")
    return f"{text} {currency}".strip()
