"""
Request payloads sent to the platform when a wizard is submitted.

The subscription service expects camelCase keys, timestamps in epoch
milliseconds and yes/no flags as ``0``/``1``. Fields that do not apply to
the chosen invoice type are left out of the payload entirely rather than
sent as nulls.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import field_serializer
from pydantic.alias_generators import to_camel

from tenantadmin.subscriptions.constants import BillingMethod
from tenantadmin.subscriptions.constants import InvoiceType
from tenantadmin.subscriptions.constants import PaymentMethod
from tenantadmin.subscriptions.constants import PaymentStatus
from tenantadmin.subscriptions.constants import WizardMode
from tenantadmin.subscriptions.pricing import PricingCalculation
from tenantadmin.subscriptions.state import WizardFormState


def to_epoch_ms(value: dt.datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def as_flag(value: bool) -> int:  # noqa: FBT001
    return 1 if value else 0


class AssignPlanRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )

    tenant_id: str
    plan_id: str
    invoice_type: InvoiceType
    is_prepayed_invoice_reason: str | None = None
    is_prepaye_invoice_contab: int | None = None
    billing_method: BillingMethod
    start_date: int | None = None
    end_date: int | None = None
    price: Decimal | None = None
    tax_rate: Decimal | None = None
    with_receipt: int | None = None
    payment_method: PaymentMethod | None = None
    payment_reference: str | None = None
    payment_status: PaymentStatus | None = None
    paid_amount: Decimal | None = None
    due_date: int | None = None
    auto_renewal_enabled: int
    is_auto_grace_period: int
    is_manual_grace_period: int
    manual_grace_period: int | None = None

    @field_serializer("price", "tax_rate", "paid_amount", when_used="json")
    def _decimal_as_number(self, value: Decimal | None) -> float | None:
        return None if value is None else float(value)

    def to_payload(self) -> dict:
        """Wire representation: camelCase, JSON types, inapplicable fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExtendPlanRequest(AssignPlanRequest):
    """Same shape as an assignment; sent to the extension endpoint."""


def build_request(
    state: WizardFormState,
    pricing: PricingCalculation | None,
) -> AssignPlanRequest:
    """
    Serialize a finished wizard.

    - price and tax rate only when pricing applies (STANDARD, or PREPAYE
      comptabilisé);
    - prepayment reason and accounting flag only for PREPAYE;
    - receipt flag, due date and receipt metadata only for STANDARD, the
      latter only when a receipt is attached;
    - manual grace days only when the manual grace period is selected.
    """
    fields: dict = {
        "tenant_id": state.tenant_id,
        "plan_id": state.selected_plan_id,
        "invoice_type": state.invoice_type,
        "billing_method": state.billing_method,
        "start_date": to_epoch_ms(state.start_date),
        "end_date": to_epoch_ms(state.end_date),
        "auto_renewal_enabled": as_flag(state.auto_renewal_enabled),
        "is_auto_grace_period": as_flag(state.is_auto_grace_period),
        "is_manual_grace_period": as_flag(state.is_manual_grace_period),
    }

    if state.is_manual_grace_period:
        fields["manual_grace_period"] = state.manual_grace_period

    if state.pricing_applies and pricing is not None:
        fields["price"] = pricing.base_price
        fields["tax_rate"] = state.tax_rate

    if state.is_prepaid:
        fields["is_prepayed_invoice_reason"] = state.is_prepayed_invoice_reason.strip()
        fields["is_prepaye_invoice_contab"] = state.is_prepaye_invoice_contab
    else:
        fields["with_receipt"] = as_flag(state.with_receipt)
        fields["due_date"] = to_epoch_ms(state.due_date)
        if state.with_receipt:
            fields["payment_method"] = state.payment_method
            fields["payment_reference"] = state.payment_reference.strip() or None
            fields["payment_status"] = state.payment_status
            fields["paid_amount"] = state.paid_amount

    request_class = (
        ExtendPlanRequest if state.mode == WizardMode.EXTEND else AssignPlanRequest
    )
    return request_class(**fields)
