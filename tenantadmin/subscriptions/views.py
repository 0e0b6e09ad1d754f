import logging
from http import HTTPStatus

from django.conf import settings
from django.contrib.auth.mixins import LoginRequiredMixin
from django.http import HttpResponse
from django.shortcuts import render
from django.utils.translation import gettext_lazy as _
from django.views import View

from tenantadmin.core.api_client import ActorContext
from tenantadmin.core.api_client import PlatformApiClient
from tenantadmin.core.api_client import PlatformApiError
from tenantadmin.core.view_helpers import hx_trigger_response
from tenantadmin.subscriptions.catalog import PlanCatalogClient
from tenantadmin.subscriptions.client import PlanAssignmentClient
from tenantadmin.subscriptions.constants import WizardMode
from tenantadmin.subscriptions.forms import RECEIPT_UPLOAD_FIELD
from tenantadmin.subscriptions.forms import form_for_wizard
from tenantadmin.subscriptions.receipts import ReceiptRejectedError
from tenantadmin.subscriptions.receipts import store_receipt
from tenantadmin.subscriptions.session import discard_wizard
from tenantadmin.subscriptions.session import load_wizard
from tenantadmin.subscriptions.session import new_wizard_id
from tenantadmin.subscriptions.session import persist
from tenantadmin.subscriptions.session import record_submission
from tenantadmin.subscriptions.session import save_wizard
from tenantadmin.subscriptions.state import ReadOnlyFieldError
from tenantadmin.subscriptions.state import UnknownFieldError
from tenantadmin.subscriptions.state import WizardError
from tenantadmin.subscriptions.workflows import MODE_CONFIGS
from tenantadmin.subscriptions.workflows import PlanWizard
from tenantadmin.subscriptions.workflows import SubmissionInProgressError
from tenantadmin.subscriptions.workflows import WizardPreconditionError

logger = logging.getLogger(__name__)

MODAL_ID = "planWizardModal"


def platform_api_for(request) -> PlatformApiClient:
    """API client acting as the signed-in super-admin."""
    return PlatformApiClient(ActorContext.from_user(request.user))


def wizard_context(wizard: PlanWizard, wizard_id: str) -> dict:
    layout = wizard.layout
    return {
        "wizard": wizard,
        "wizard_id": wizard_id,
        "state": wizard.state,
        "form": form_for_wizard(wizard),
        "pricing": wizard.pricing,
        "step": wizard.step,
        "step_title": wizard.step_title,
        "steps": [
            (number, layout.title_at(number))
            for number in range(1, len(layout.kinds) + 1)
        ],
        "hint": wizard.hint,
        "title": wizard.config.title,
        "modal_id": MODAL_ID,
    }


class PlanWizardOpenView(LoginRequiredMixin, View):
    """
    Open a plan wizard for a tenant and return the modal.

    The hosting tenant page passes ``tenant_name`` (and, for extensions,
    ``plan_id``) as query parameters; the wizard does no tenant lookup.
    """

    mode: WizardMode = WizardMode.ASSIGN
    template_name = "subscriptions/plan_wizard_modal.html"
    error_template_name = "subscriptions/partials/plan_wizard_error.html"

    def get(self, request, *args, **kwargs):
        tenant_id = self.kwargs.get("tenant_id", "")
        tenant_name = request.GET.get("tenant_name", "")
        config = MODE_CONFIGS[self.mode]
        try:
            plans = PlanCatalogClient(platform_api_for(request)).list_plans(
                public_only=settings.PLAN_CATALOG_PUBLIC_ONLY,
            )
            wizard = PlanWizard.open(
                self.mode,
                tenant_id,
                tenant_name,
                plans,
                existing_plan_id=request.GET.get("plan_id") or None,
                tax_rate=settings.PLAN_WIZARD_DEFAULT_TAX_RATE,
            )
        except (PlatformApiError, WizardPreconditionError) as exc:
            logger.warning(
                "Could not open %s wizard for tenant %s: %s",
                self.mode,
                tenant_id,
                exc.detail,
            )
            return render(
                request,
                self.error_template_name,
                {"title": config.title, "message": exc.detail, "modal_id": MODAL_ID},
            )

        wizard_id = new_wizard_id()
        save_wizard(request, wizard_id, wizard)
        return render(request, self.template_name, wizard_context(wizard, wizard_id))


class AssignPlanWizardView(PlanWizardOpenView):
    mode = WizardMode.ASSIGN


class ExtendPlanWizardView(PlanWizardOpenView):
    mode = WizardMode.EXTEND


class PlanWizardStepView(LoginRequiredMixin, View):
    """
    Apply one user action to an open wizard and re-render its current step.

    The posted ``action`` is one of ``update`` (field edits only), ``next``,
    ``prev``, ``reset_price``, ``submit`` or ``close``. Field edits in the
    posted form are applied before any navigation.
    """

    template_name = "subscriptions/partials/plan_wizard_step.html"

    def post(self, request, *args, **kwargs):
        wizard_id = self.kwargs["wizard_id"]
        action = request.POST.get("action", "update")
        wizard = load_wizard(request, wizard_id)

        if action == "close":
            discard_wizard(request, wizard_id)
            return hx_trigger_response(close_modal=MODAL_ID)
        if wizard is None:
            return hx_trigger_response(
                _("This wizard is no longer open. Please start again."),
                level="warning",
                status_code=HTTPStatus.GONE,
                close_modal=MODAL_ID,
            )
        if wizard.state.submitting:
            return hx_trigger_response(
                _("A submission is already in progress."),
                level="warning",
                status_code=HTTPStatus.CONFLICT,
            )

        form = form_for_wizard(wizard, request.POST, request.FILES)
        self.apply_form(wizard, wizard_id, form)

        if action == "submit":
            return self.submit(request, wizard_id, wizard)
        if action == "next":
            wizard.next_step()
        elif action == "prev":
            wizard.prev_step()
        elif action == "reset_price":
            wizard.reset_custom_price()

        save_wizard(request, wizard_id, wizard)
        return self.render_step(wizard, wizard_id)

    def render_step(self, wizard: PlanWizard, wizard_id: str):
        return render(self.request, self.template_name, wizard_context(wizard, wizard_id))

    def apply_form(self, wizard: PlanWizard, wizard_id: str, form) -> None:
        if not form.is_valid():
            wizard.record_errors(form.error_messages())
            return
        try:
            wizard.update_fields(form.to_updates())
        except (UnknownFieldError, ReadOnlyFieldError) as exc:
            logger.warning("Rejected edit on wizard %s: %s", wizard_id, exc.detail)
            wizard.record_errors({exc.field: exc.detail})

        upload = form.cleaned_data.get(RECEIPT_UPLOAD_FIELD)
        if upload:
            try:
                wizard.attach_receipt(store_receipt(upload, wizard_id))
            except ReceiptRejectedError as exc:
                logger.info("Receipt refused for wizard %s: %s", wizard_id, exc.code)
                wizard.reject_receipt(exc.detail)

    def submit(self, request, wizard_id: str, wizard: PlanWizard):
        try:
            submission = wizard.start_submission()
        except SubmissionInProgressError as exc:
            return hx_trigger_response(
                exc.detail,
                level="warning",
                status_code=HTTPStatus.CONFLICT,
            )
        except WizardError:
            wizard.record_errors(
                {issue.field: issue.message for issue in wizard.issues},
            )
            save_wizard(request, wizard_id, wizard)
            return self.render_step(wizard, wizard_id)

        # Stored before calling out so a second submit sees the flag.
        save_wizard(request, wizard_id, wizard)
        persist(request)

        client = PlanAssignmentClient(platform_api_for(request))
        result = wizard.send(client, submission)

        if record_submission(request, wizard_id, wizard, result) is None:
            return HttpResponse(status=HTTPStatus.NO_CONTENT)

        if not result.success:
            return self.render_step(wizard, wizard_id)

        discard_wizard(request, wizard_id)
        logger.info(
            "%s completed for tenant %s (plan %s)",
            wizard.config.mode,
            wizard.state.tenant_id,
            wizard.state.selected_plan_id,
        )
        return hx_trigger_response(
            result.message,
            close_modal=MODAL_ID,
            extra_payload={
                wizard.config.success_event: {"tenantId": wizard.state.tenant_id},
            },
        )
