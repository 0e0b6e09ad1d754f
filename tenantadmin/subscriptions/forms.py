from __future__ import annotations

from typing import TYPE_CHECKING
from typing import Any

from crispy_forms.helper import FormHelper
from crispy_forms.layout import Layout
from django import forms
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from tenantadmin.subscriptions.constants import BillingMethod
from tenantadmin.subscriptions.constants import InvoiceType
from tenantadmin.subscriptions.constants import PaymentMethod
from tenantadmin.subscriptions.constants import PaymentStatus
from tenantadmin.subscriptions.pricing import format_money
from tenantadmin.subscriptions.state import as_aware_datetime
from tenantadmin.subscriptions.steps import StepKind

if TYPE_CHECKING:
    from tenantadmin.subscriptions.workflows import PlanWizard

GRACE_AUTOMATIC = "auto"
GRACE_MANUAL = "manual"

DATE_FIELDS = ("start_date", "end_date", "due_date")
DATE_WIDGET = forms.DateInput(attrs={"type": "date"})

# Receipt selection is handled by the view; it never maps onto a state field directly.
RECEIPT_UPLOAD_FIELD = "receipt_upload"


class WizardStepForm(forms.Form):
    """
    Base form for one wizard step.

    Forms only parse input. Whether a step is complete is decided by the step
    rules, so every field is optional here. Fields that do not apply to the
    wizard's current state are removed in ``__init__`` and are therefore
    never read back from a POST.
    """

    def __init__(self, *args, wizard: PlanWizard, **kwargs):
        self.wizard = wizard
        kwargs.setdefault("initial", self.initial_from_state(wizard.state))
        super().__init__(*args, **kwargs)
        self.drop_inapplicable_fields()
        for name in wizard.state.errors:
            if name in self.fields:
                self.fields[name].widget.attrs["aria-invalid"] = "true"
        self.helper = FormHelper()
        self.helper.form_tag = False
        self.helper.disable_csrf = True
        self.helper.layout = Layout(*self.fields.keys())

    def drop_inapplicable_fields(self) -> None:
        """Hook for subclasses."""

    def initial_from_state(self, state) -> dict[str, Any]:
        initial = {}
        for name in self.base_fields:
            if not hasattr(state, name):
                continue
            value = getattr(state, name)
            if name in DATE_FIELDS and value is not None:
                value = timezone.localtime(value).date()
            initial[name] = value
        return initial

    def to_state_value(self, name: str, value: Any) -> Any:
        if name in DATE_FIELDS:
            return as_aware_datetime(value)
        return value

    def is_posted(self, name: str) -> bool:
        if isinstance(self.fields[name], forms.BooleanField):
            return True
        return name in self.data or name in self.files

    def to_updates(self) -> dict[str, Any]:
        """
        Return the edits this submission makes to the wizard state, in field
        order, leaving out values that did not change.
        """
        state = self.wizard.state
        updates: dict[str, Any] = {}
        for name, field in self.fields.items():
            if field.disabled or name == RECEIPT_UPLOAD_FIELD:
                continue
            if not hasattr(state, name) or not self.is_posted(name):
                continue
            value = self.to_state_value(name, self.cleaned_data.get(name))
            if value != getattr(state, name):
                updates[name] = value

        new_method = updates.get("billing_method", state.billing_method)
        if new_method != BillingMethod.CUSTOM:
            updates.pop("start_date", None)
            updates.pop("end_date", None)
        return updates

    def error_messages(self) -> dict[str, str]:
        return {name: errors[0] for name, errors in self.errors.items() if errors}


class PlanStepForm(WizardStepForm):
    selected_plan_id = forms.ChoiceField(label=_("Plan"), required=False)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        field = self.fields["selected_plan_id"]
        field.choices = [("", _("Select a plan"))] + [
            (
                plan.plan_id,
                f"{plan.plan_name} ({format_money(plan.monthly_price, plan.currency)}"
                f" / {_('month')})",
            )
            for plan in self.wizard.plans
        ]
        if "selected_plan_id" in self.wizard.config.read_only_fields:
            field.disabled = True


class InvoiceTypeStepForm(WizardStepForm):
    invoice_type = forms.ChoiceField(
        label=_("Invoice type"),
        choices=InvoiceType.choices,
        widget=forms.RadioSelect,
        required=False,
    )
    is_prepaye_invoice_contab = forms.BooleanField(
        label=_("Comptabilisé (track price and tax)"),
        required=False,
    )
    is_prepayed_invoice_reason = forms.CharField(
        label=_("Reason for prepaid invoicing"),
        widget=forms.Textarea(attrs={"rows": 3}),
        required=False,
    )

    def drop_inapplicable_fields(self) -> None:
        if not self.wizard.state.is_prepaid:
            del self.fields["is_prepaye_invoice_contab"]
            del self.fields["is_prepayed_invoice_reason"]

    def to_state_value(self, name, value):
        if name == "is_prepaye_invoice_contab":
            return 1 if value else 0
        if name == "invoice_type":
            return value or None
        return super().to_state_value(name, value)


class BillingMethodStepForm(WizardStepForm):
    billing_method = forms.ChoiceField(
        label=_("Billing method"),
        choices=BillingMethod.choices,
        widget=forms.RadioSelect,
        required=False,
    )

    def to_state_value(self, name, value):
        if name == "billing_method":
            return value or None
        return super().to_state_value(name, value)


class BillingStepForm(BillingMethodStepForm):
    start_date = forms.DateField(label=_("Start date"), widget=DATE_WIDGET, required=False)
    end_date = forms.DateField(label=_("End date"), widget=DATE_WIDGET, required=False)
    custom_price = forms.DecimalField(
        label=_("Price (before tax)"),
        min_value=0,
        max_digits=14,
        decimal_places=2,
        required=False,
    )
    tax_rate = forms.DecimalField(
        label=_("Tax rate"),
        min_value=0,
        max_value=1,
        max_digits=5,
        decimal_places=4,
        required=False,
    )

    def drop_inapplicable_fields(self) -> None:
        state = self.wizard.state
        if state.billing_method != BillingMethod.CUSTOM:
            del self.fields["start_date"]
            del self.fields["end_date"]
        if not state.pricing_applies:
            del self.fields["custom_price"]
            del self.fields["tax_rate"]

    def to_state_value(self, name, value):
        if name == "tax_rate" and value is None:
            return self.wizard.state.tax_rate
        return super().to_state_value(name, value)


class PaymentStepForm(WizardStepForm):
    with_receipt = forms.BooleanField(label=_("A payment receipt is available"), required=False)
    receipt_upload = forms.FileField(label=_("Receipt (PDF, JPEG or PNG, 2 MB max)"), required=False)
    payment_method = forms.ChoiceField(
        label=_("Payment method"),
        choices=[("", "---------"), *PaymentMethod.choices],
        required=False,
    )
    payment_reference = forms.CharField(label=_("Payment reference"), required=False)
    payment_status = forms.ChoiceField(
        label=_("Payment status"),
        choices=[("", "---------"), *PaymentStatus.choices],
        required=False,
    )
    paid_amount = forms.DecimalField(
        label=_("Amount paid"),
        max_digits=14,
        decimal_places=2,
        required=False,
    )
    due_date = forms.DateField(label=_("Due date"), widget=DATE_WIDGET, required=False)

    receipt_fields = (
        "receipt_upload",
        "payment_method",
        "payment_reference",
        "payment_status",
        "paid_amount",
    )
    payment_fields = ("with_receipt", *receipt_fields, "due_date")

    def drop_inapplicable_fields(self) -> None:
        state = self.wizard.state
        if state.invoice_type != InvoiceType.STANDARD:
            for name in self.payment_fields:
                self.fields.pop(name, None)
        elif not state.with_receipt:
            for name in self.receipt_fields:
                self.fields.pop(name, None)

    def to_state_value(self, name, value):
        if name in ("payment_method", "payment_status"):
            return value or None
        return super().to_state_value(name, value)


class ConfigurationStepForm(PaymentStepForm, BillingStepForm):
    """Billing configuration and payment details on one step (extensions)."""

    field_order = [
        "billing_method",
        "start_date",
        "end_date",
        "custom_price",
        "tax_rate",
        *PaymentStepForm.payment_fields,
    ]

    def drop_inapplicable_fields(self) -> None:
        BillingStepForm.drop_inapplicable_fields(self)
        PaymentStepForm.drop_inapplicable_fields(self)
        # Method is chosen on the previous step.
        del self.fields["billing_method"]


class GracePeriodStepForm(WizardStepForm):
    auto_renewal_enabled = forms.BooleanField(label=_("Renew automatically"), required=False)
    grace_period = forms.ChoiceField(
        label=_("Grace period"),
        choices=[
            (GRACE_AUTOMATIC, _("Use the plan's default grace period")),
            (GRACE_MANUAL, _("Set a grace period manually")),
        ],
        widget=forms.RadioSelect,
        required=False,
    )
    manual_grace_period = forms.IntegerField(label=_("Grace period (days)"), required=False)

    def initial_from_state(self, state):
        initial = super().initial_from_state(state)
        if state.is_manual_grace_period:
            initial["grace_period"] = GRACE_MANUAL
        elif state.is_auto_grace_period:
            initial["grace_period"] = GRACE_AUTOMATIC
        return initial

    def drop_inapplicable_fields(self) -> None:
        if not self.wizard.state.is_manual_grace_period:
            del self.fields["manual_grace_period"]

    def to_updates(self):
        updates = super().to_updates()
        choice = self.cleaned_data.get("grace_period")
        state = self.wizard.state
        grace_updates = {}
        if choice == GRACE_AUTOMATIC and not state.is_auto_grace_period:
            grace_updates["is_auto_grace_period"] = True
            updates.pop("manual_grace_period", None)
        elif choice == GRACE_MANUAL and not state.is_manual_grace_period:
            grace_updates["is_manual_grace_period"] = True
        # The grace choice goes first; its side effects reset the day count.
        return {**grace_updates, **updates}


STEP_FORMS: dict[StepKind, type[WizardStepForm]] = {
    StepKind.PLAN: PlanStepForm,
    StepKind.INVOICE_TYPE: InvoiceTypeStepForm,
    StepKind.BILLING_METHOD: BillingMethodStepForm,
    StepKind.BILLING: BillingStepForm,
    StepKind.PAYMENT: PaymentStepForm,
    StepKind.CONFIGURATION: ConfigurationStepForm,
    StepKind.GRACE_PERIOD: GracePeriodStepForm,
}


def form_for_wizard(wizard: PlanWizard, data=None, files=None) -> WizardStepForm:
    """Build the form for the wizard's current step."""
    kind = wizard.layout.kind_at(wizard.current_step)
    return STEP_FORMS[kind](data, files, wizard=wizard)
