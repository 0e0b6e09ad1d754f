"""
Step model and validation for the plan wizards.

Each wizard step is projected from the form state into a small frozen
variant that carries only what matters for the current combination of
invoice type, accounting treatment and billing method. Validation is a
single-dispatch function over those variants, so "can the user move on?"
is answered in one place instead of in scattered conditionals.

The assign wizard configures billing in one step (3) and collects payment
details in step 4. The extend wizard picks the billing method in step 3 and
configures it together with payment details in step 4. Both share the same
rules; only the layout differs.

Validation never raises. An empty issue list means the step may advance.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from functools import singledispatch

from django.utils.translation import gettext as _

from tenantadmin.subscriptions.constants import ASSIGN_GRACE_DAYS_MAX
from tenantadmin.subscriptions.constants import ASSIGN_GRACE_DAYS_MIN
from tenantadmin.subscriptions.constants import EXTEND_GRACE_DAYS_MAX
from tenantadmin.subscriptions.constants import EXTEND_GRACE_DAYS_MIN
from tenantadmin.subscriptions.constants import FIRST_STEP
from tenantadmin.subscriptions.constants import BillingMethod
from tenantadmin.subscriptions.constants import InvoiceType
from tenantadmin.subscriptions.pricing import PricingCalculation
from tenantadmin.subscriptions.state import WizardFormState


class StepKind(str, Enum):
    PLAN = "plan"
    INVOICE_TYPE = "invoice_type"
    BILLING = "billing"
    BILLING_METHOD = "billing_method"
    CONFIGURATION = "configuration"
    PAYMENT = "payment"
    GRACE_PERIOD = "grace_period"


@dataclass(frozen=True)
class StepLayout:
    """Which kind of step sits at each position, plus the grace-day bounds."""

    kinds: tuple[StepKind, ...]
    titles: tuple[str, ...]
    grace_days_min: int
    grace_days_max: int

    def kind_at(self, step: int) -> StepKind:
        return self.kinds[step - FIRST_STEP]

    def title_at(self, step: int) -> str:
        return self.titles[step - FIRST_STEP]


ASSIGN_LAYOUT = StepLayout(
    kinds=(
        StepKind.PLAN,
        StepKind.INVOICE_TYPE,
        StepKind.BILLING,
        StepKind.PAYMENT,
        StepKind.GRACE_PERIOD,
    ),
    titles=(
        "Plan selection",
        "Invoice type",
        "Billing configuration",
        "Payment information",
        "Advanced settings",
    ),
    grace_days_min=ASSIGN_GRACE_DAYS_MIN,
    grace_days_max=ASSIGN_GRACE_DAYS_MAX,
)

EXTEND_LAYOUT = StepLayout(
    kinds=(
        StepKind.PLAN,
        StepKind.INVOICE_TYPE,
        StepKind.BILLING_METHOD,
        StepKind.CONFIGURATION,
        StepKind.GRACE_PERIOD,
    ),
    titles=(
        "Selected plan",
        "Invoice type",
        "Billing method",
        "Configuration",
        "Finalisation",
    ),
    grace_days_min=EXTEND_GRACE_DAYS_MIN,
    grace_days_max=EXTEND_GRACE_DAYS_MAX,
)


@dataclass(frozen=True)
class StepIssue:
    field: str
    message: str


# ---------------------------------------------------------------------------
# Step variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlanSelection:
    plan_id: str


@dataclass(frozen=True)
class InvoiceTypeSelection:
    invoice_type: InvoiceType | None
    # Only carried for PREPAYE; STANDARD invoices have no reason to give.
    prepaid_reason: str | None = None


@dataclass(frozen=True)
class BillingMethodSelection:
    billing_method: BillingMethod | None


@dataclass(frozen=True)
class CustomPeriod:
    start: dt.datetime | None
    end: dt.datetime | None


@dataclass(frozen=True)
class BillingConfiguration:
    billing_method: BillingMethod | None
    # None for MONTHLY/YEARLY, whose period is derived by the system.
    custom_period: CustomPeriod | None = None
    # Carried whenever pricing applies; mandatory only for CUSTOM billing.
    custom_price: Decimal | None = None
    price_required: bool = False


@dataclass(frozen=True)
class ReceiptDetails:
    payment_method: str | None
    payment_reference: str
    paid_amount: Decimal | None


@dataclass(frozen=True)
class PaymentDetails:
    """Payment step of a STANDARD invoice."""

    due_date: dt.datetime | None
    total_price: Decimal | None
    receipt: ReceiptDetails | None = None


@dataclass(frozen=True)
class NoPaymentDetails:
    """Prepaid invoices collect no payment details in the wizard."""


@dataclass(frozen=True)
class ConfigurationAndPayment:
    billing: BillingConfiguration
    payment: PaymentDetails | NoPaymentDetails


@dataclass(frozen=True)
class GracePeriodSettings:
    automatic: bool
    manual: bool
    manual_days: int | None
    min_days: int
    max_days: int


StepVariant = (
    PlanSelection
    | InvoiceTypeSelection
    | BillingMethodSelection
    | BillingConfiguration
    | PaymentDetails
    | NoPaymentDetails
    | ConfigurationAndPayment
    | GracePeriodSettings
)


# ---------------------------------------------------------------------------
# Projection from form state
# ---------------------------------------------------------------------------


def _billing_configuration(state: WizardFormState) -> BillingConfiguration:
    is_custom = state.billing_method == BillingMethod.CUSTOM
    price_required = is_custom and state.pricing_applies
    return BillingConfiguration(
        billing_method=state.billing_method,
        custom_period=(
            CustomPeriod(start=state.start_date, end=state.end_date)
            if is_custom
            else None
        ),
        custom_price=state.custom_price if state.pricing_applies else None,
        price_required=price_required,
    )


def _payment(
    state: WizardFormState,
    pricing: PricingCalculation | None,
) -> PaymentDetails | NoPaymentDetails:
    if state.invoice_type != InvoiceType.STANDARD:
        return NoPaymentDetails()
    receipt = None
    if state.with_receipt:
        receipt = ReceiptDetails(
            payment_method=state.payment_method,
            payment_reference=state.payment_reference,
            paid_amount=state.paid_amount,
        )
    return PaymentDetails(
        due_date=state.due_date,
        total_price=pricing.total_price if pricing else None,
        receipt=receipt,
    )


def project_step(
    state: WizardFormState,
    pricing: PricingCalculation | None,
    layout: StepLayout,
    step: int | None = None,
) -> StepVariant:
    """Build the variant for ``step`` (defaults to the current step)."""
    kind = layout.kind_at(step or state.current_step)
    if kind is StepKind.PLAN:
        return PlanSelection(plan_id=state.selected_plan_id)
    if kind is StepKind.INVOICE_TYPE:
        return InvoiceTypeSelection(
            invoice_type=state.invoice_type,
            prepaid_reason=state.is_prepayed_invoice_reason if state.is_prepaid else None,
        )
    if kind is StepKind.BILLING_METHOD:
        return BillingMethodSelection(billing_method=state.billing_method)
    if kind is StepKind.BILLING:
        return _billing_configuration(state)
    if kind is StepKind.PAYMENT:
        return _payment(state, pricing)
    if kind is StepKind.CONFIGURATION:
        return ConfigurationAndPayment(
            billing=_billing_configuration(state),
            payment=_payment(state, pricing),
        )
    return GracePeriodSettings(
        automatic=state.is_auto_grace_period,
        manual=state.is_manual_grace_period,
        manual_days=state.manual_grace_period,
        min_days=layout.grace_days_min,
        max_days=layout.grace_days_max,
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@singledispatch
def step_issues(step) -> list[StepIssue]:
    msg = f"No validation rules for {type(step).__name__}"
    raise TypeError(msg)


@step_issues.register
def _plan_selection_issues(step: PlanSelection) -> list[StepIssue]:
    if not step.plan_id:
        return [StepIssue("selected_plan_id", _("Please select a plan."))]
    return []


@step_issues.register
def _invoice_type_issues(step: InvoiceTypeSelection) -> list[StepIssue]:
    if not step.invoice_type:
        return [StepIssue("invoice_type", _("Please choose an invoice type."))]
    if step.prepaid_reason is not None and not step.prepaid_reason.strip():
        return [
            StepIssue(
                "is_prepayed_invoice_reason",
                _("A reason is required for prepaid invoicing."),
            ),
        ]
    return []


@step_issues.register
def _billing_method_issues(step: BillingMethodSelection) -> list[StepIssue]:
    if not step.billing_method:
        return [StepIssue("billing_method", _("Please select a billing method."))]
    return []


def period_issues(period: CustomPeriod) -> list[StepIssue]:
    issues = []
    if period.start is None:
        issues.append(StepIssue("start_date", _("A start date is required.")))
    if period.end is None:
        issues.append(StepIssue("end_date", _("An end date is required.")))
    if period.start is not None and period.end is not None and period.end <= period.start:
        issues.append(
            StepIssue("end_date", _("The end date must be after the start date.")),
        )
    return issues


@step_issues.register
def _billing_configuration_issues(step: BillingConfiguration) -> list[StepIssue]:
    if not step.billing_method:
        return [StepIssue("billing_method", _("Please select a billing method."))]
    issues = []
    if step.custom_period is not None:
        issues.extend(period_issues(step.custom_period))
    if step.price_required and step.custom_price is None:
        issues.append(
            StepIssue("custom_price", _("A price is required for a custom period.")),
        )
    elif step.custom_price is not None and step.custom_price < 0:
        issues.append(StepIssue("custom_price", _("The price cannot be negative.")))
    return issues


@step_issues.register
def _payment_issues(step: PaymentDetails) -> list[StepIssue]:
    issues = []
    receipt = step.receipt
    if receipt is not None:
        if not receipt.payment_method:
            issues.append(
                StepIssue("payment_method", _("A payment method is required.")),
            )
        if not receipt.payment_reference.strip():
            issues.append(
                StepIssue("payment_reference", _("A payment reference is required.")),
            )
        if receipt.paid_amount is not None and receipt.paid_amount < 0:
            issues.append(
                StepIssue("paid_amount", _("The paid amount cannot be negative.")),
            )

    fully_covered = (
        receipt is not None
        and receipt.paid_amount is not None
        and step.total_price is not None
        and receipt.paid_amount >= step.total_price
    )
    if step.due_date is None and not fully_covered:
        issues.append(StepIssue("due_date", _("A due date is required.")))
    return issues


@step_issues.register
def _no_payment_issues(step: NoPaymentDetails) -> list[StepIssue]:
    return []


@step_issues.register
def _configuration_and_payment_issues(step: ConfigurationAndPayment) -> list[StepIssue]:
    return step_issues(step.billing) + step_issues(step.payment)


@step_issues.register
def _grace_period_issues(step: GracePeriodSettings) -> list[StepIssue]:
    if step.automatic == step.manual:
        return [
            StepIssue(
                "grace_period",
                _("Choose either an automatic or a manual grace period."),
            ),
        ]
    if not step.manual:
        return []
    if step.manual_days is None:
        return [
            StepIssue(
                "manual_grace_period",
                _("The number of manual grace days is required."),
            ),
        ]
    if not step.min_days <= step.manual_days <= step.max_days:
        return [
            StepIssue(
                "manual_grace_period",
                _("The grace period must be between %(min)s and %(max)s days.")
                % {"min": step.min_days, "max": step.max_days},
            ),
        ]
    return []


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def issues_for(
    state: WizardFormState,
    pricing: PricingCalculation | None,
    layout: StepLayout,
    step: int | None = None,
) -> list[StepIssue]:
    return step_issues(project_step(state, pricing, layout, step))


def can_advance(
    state: WizardFormState,
    pricing: PricingCalculation | None,
    layout: StepLayout,
) -> bool:
    """True when the current step's rules all hold."""
    return not issues_for(state, pricing, layout)


def step_hint(
    state: WizardFormState,
    pricing: PricingCalculation | None,
    layout: StepLayout,
) -> str | None:
    """The message explaining why the current step cannot advance, if any."""
    issues = issues_for(state, pricing, layout)
    return issues[0].message if issues else None
