"""
Form state for the plan assignment/extension wizards.

``WizardFormState`` is the single mutable record of one open wizard. It is
only ever changed through :func:`apply_field_update` (field edits) and the
navigation methods on :class:`~tenantadmin.subscriptions.workflows.PlanWizard`,
so the derivation rules below hold after every edit:

- auto and manual grace periods are mutually exclusive;
- MONTHLY/YEARLY billing derives the period from "now", CUSTOM billing waits
  for user-supplied dates;
- ``selected_plan`` always mirrors ``selected_plan_id``.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from dateutil.relativedelta import relativedelta
from django.utils import timezone
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from tenantadmin.subscriptions.catalog import Plan
from tenantadmin.subscriptions.catalog import find_plan
from tenantadmin.subscriptions.constants import FIRST_STEP
from tenantadmin.subscriptions.constants import BillingMethod
from tenantadmin.subscriptions.constants import InvoiceType
from tenantadmin.subscriptions.constants import PaymentMethod
from tenantadmin.subscriptions.constants import PaymentStatus
from tenantadmin.subscriptions.constants import WizardMode
from tenantadmin.subscriptions.pricing import PricingCalculation
from tenantadmin.subscriptions.pricing import calculate_pricing
from tenantadmin.subscriptions.receipts import ReceiptAttachment


class WizardError(Exception):
    """Base exception for wizard misuse (not for validation failures)."""

    def __init__(self, detail: str, code: str = "wizard_error"):
        self.detail = detail
        self.code = code
        super().__init__(detail)


class UnknownFieldError(WizardError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"'{field}' is not an editable wizard field", code="unknown_field")


class ReadOnlyFieldError(WizardError):
    def __init__(self, field: str, reason: str = ""):
        self.field = field
        detail = f"'{field}' cannot be changed"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(detail, code="read_only_field")


DEFAULT_TAX_RATE = Decimal("0.20")


class WizardFormState(BaseModel):
    """All inputs of one wizard session, plus navigation and error slots."""

    model_config = ConfigDict(extra="forbid")

    mode: WizardMode = WizardMode.ASSIGN
    tenant_id: str = ""
    tenant_name: str = ""
    current_step: int = FIRST_STEP

    # Step 1
    selected_plan_id: str = ""
    selected_plan: Plan | None = None

    # Step 2
    invoice_type: InvoiceType | None = None
    is_prepaye_invoice_contab: int = Field(default=0, ge=0, le=1)
    is_prepayed_invoice_reason: str = ""

    # Step 3 (and 4 for extensions)
    billing_method: BillingMethod | None = None
    start_date: dt.datetime | None = None
    end_date: dt.datetime | None = None
    custom_price: Decimal | None = None
    tax_rate: Decimal = DEFAULT_TAX_RATE

    # Step 4
    with_receipt: bool = False
    receipt_file: ReceiptAttachment | None = None
    payment_method: PaymentMethod | None = None
    payment_reference: str = ""
    payment_status: PaymentStatus | None = None
    paid_amount: Decimal | None = None
    due_date: dt.datetime | None = None

    # Step 5
    auto_renewal_enabled: bool = True
    is_auto_grace_period: bool = True
    is_manual_grace_period: bool = False
    manual_grace_period: int | None = None

    errors: dict[str, str] = Field(default_factory=dict)
    submitting: bool = False
    submit_error: str | None = None
    completed: bool = False

    @property
    def is_prepaid(self) -> bool:
        return self.invoice_type == InvoiceType.PREPAYE

    @property
    def pricing_applies(self) -> bool:
        """Price and tax are tracked for STANDARD and comptabilisé PREPAYE."""
        if self.invoice_type == InvoiceType.STANDARD:
            return True
        return self.is_prepaid and self.is_prepaye_invoice_contab == 1

    @property
    def has_system_dates(self) -> bool:
        return self.billing_method in (BillingMethod.MONTHLY, BillingMethod.YEARLY)


EDITABLE_FIELDS = frozenset(
    {
        "selected_plan_id",
        "invoice_type",
        "is_prepaye_invoice_contab",
        "is_prepayed_invoice_reason",
        "billing_method",
        "start_date",
        "end_date",
        "custom_price",
        "tax_rate",
        "with_receipt",
        "receipt_file",
        "payment_method",
        "payment_reference",
        "payment_status",
        "paid_amount",
        "due_date",
        "auto_renewal_enabled",
        "is_auto_grace_period",
        "is_manual_grace_period",
        "manual_grace_period",
    },
)


def derive_pricing(state: WizardFormState) -> PricingCalculation | None:
    """Pricing for the current state, or None when it does not apply."""
    if not state.pricing_applies:
        return None
    return calculate_pricing(
        state.selected_plan,
        state.billing_method,
        state.custom_price,
        state.tax_rate,
        state.paid_amount,
    )


def billing_period(
    billing_method: str,
    start: dt.datetime,
) -> tuple[dt.datetime, dt.datetime]:
    """Return the derived period for MONTHLY/YEARLY billing starting at ``start``."""
    if billing_method == BillingMethod.MONTHLY:
        return start, start + relativedelta(months=1)
    if billing_method == BillingMethod.YEARLY:
        return start, start + relativedelta(years=1)
    msg = f"No derived period for billing method {billing_method!r}"
    raise ValueError(msg)


def as_aware_datetime(value: Any) -> dt.datetime | None:
    """Dates become midnight in the current timezone; naive datetimes are made aware."""
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        if timezone.is_naive(value):
            return timezone.make_aware(value)
        return value
    if isinstance(value, dt.date):
        return timezone.make_aware(dt.datetime.combine(value, dt.time.min))
    msg = f"Expected a date or datetime, got {type(value).__name__}"
    raise TypeError(msg)


def _rebuild(state: WizardFormState, changes: dict[str, Any]) -> WizardFormState:
    data = state.model_dump()
    data.update(changes)
    return WizardFormState.model_validate(data)


def apply_field_update(
    state: WizardFormState,
    field: str,
    value: Any,
    *,
    plans: Iterable[Plan] = (),
    now: Callable[[], dt.datetime] = timezone.now,
    read_only: frozenset[str] = frozenset(),
) -> WizardFormState:
    """
    Return a new state with ``field`` set to ``value`` and its side effects applied.

    Raises:
        UnknownFieldError: ``field`` is not an editable wizard field.
        ReadOnlyFieldError: ``field`` is locked for this wizard, or the dates
            of a MONTHLY/YEARLY period are being edited by hand.
    """
    if field not in EDITABLE_FIELDS:
        raise UnknownFieldError(field)
    if field in read_only:
        raise ReadOnlyFieldError(field)

    changes: dict[str, Any] = {field: value}
    errors = dict(state.errors)
    errors.pop(field, None)

    if field == "selected_plan_id":
        plan = find_plan(plans, value)
        if plan is None:
            changes["selected_plan_id"] = ""
            changes["selected_plan"] = None
            if value:
                errors[field] = "The selected plan is not in the catalog."
        else:
            changes["selected_plan"] = plan
            if state.has_system_dates:
                start, end = billing_period(state.billing_method, now())
                changes.update(start_date=start, end_date=end)

    elif field == "billing_method":
        if value in (BillingMethod.MONTHLY, BillingMethod.YEARLY):
            start, end = billing_period(value, now())
            changes.update(start_date=start, end_date=end)
            changes["custom_price"] = None
        else:
            changes.update(start_date=None, end_date=None)
            if value == BillingMethod.CUSTOM:
                changes["custom_price"] = None
        errors.pop("start_date", None)
        errors.pop("end_date", None)

    elif field in ("start_date", "end_date"):
        if state.billing_method != BillingMethod.CUSTOM:
            raise ReadOnlyFieldError(field, "dates are derived from the billing method")
        changes[field] = as_aware_datetime(value)

    elif field == "due_date":
        changes[field] = as_aware_datetime(value)

    elif field == "is_auto_grace_period" and value:
        changes.update(is_manual_grace_period=False, manual_grace_period=None)
        errors.pop("manual_grace_period", None)

    elif field == "is_manual_grace_period":
        if value:
            changes["is_auto_grace_period"] = False
        else:
            changes["manual_grace_period"] = None

    elif field == "invoice_type" and value == InvoiceType.STANDARD:
        errors.pop("is_prepayed_invoice_reason", None)

    changes["errors"] = errors
    new_state = _rebuild(state, changes)

    if field == "payment_status" and value == PaymentStatus.PAID:
        pricing = derive_pricing(new_state)
        if pricing is not None:
            new_state = _rebuild(new_state, {"paid_amount": pricing.total_price})

    return new_state


def reset_custom_price(state: WizardFormState) -> WizardFormState:
    """Drop the price override so the plan's list price applies again."""
    return apply_field_update(state, "custom_price", None)
