"""
Plan assignment and extension wizards.

Both wizards run on the same :class:`PlanWizard` engine. The mode picks a
:class:`ModeConfig` that holds everything the two flows disagree on:

- the step layout (the extension splits billing method selection from its
  configuration);
- the manual grace period bounds;
- the plan being pre-selected and read-only when extending;
- which platform operation receives the finished request.

Everything else (field derivation, validation, pricing, serialisation) is
shared. The engine holds no HTTP code: submission goes through a
:class:`~tenantadmin.subscriptions.client.PlanAssignmentClient`.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from tenantadmin.core.api_client import PlatformApiError
from tenantadmin.subscriptions.catalog import Plan
from tenantadmin.subscriptions.catalog import find_plan
from tenantadmin.subscriptions.client import PlanAssignmentClient
from tenantadmin.subscriptions.constants import FIRST_STEP
from tenantadmin.subscriptions.constants import LAST_STEP
from tenantadmin.subscriptions.constants import SUBMIT_FALLBACK_MESSAGES
from tenantadmin.subscriptions.constants import WizardMode
from tenantadmin.subscriptions.payloads import AssignPlanRequest
from tenantadmin.subscriptions.payloads import build_request
from tenantadmin.subscriptions.pricing import PricingCalculation
from tenantadmin.subscriptions.receipts import ReceiptAttachment
from tenantadmin.subscriptions.receipts import discard_receipt
from tenantadmin.subscriptions.state import DEFAULT_TAX_RATE
from tenantadmin.subscriptions.state import WizardError
from tenantadmin.subscriptions.state import WizardFormState
from tenantadmin.subscriptions.state import apply_field_update
from tenantadmin.subscriptions.state import derive_pricing
from tenantadmin.subscriptions.state import reset_custom_price
from tenantadmin.subscriptions.steps import ASSIGN_LAYOUT
from tenantadmin.subscriptions.steps import EXTEND_LAYOUT
from tenantadmin.subscriptions.steps import StepIssue
from tenantadmin.subscriptions.steps import StepLayout
from tenantadmin.subscriptions.steps import StepVariant
from tenantadmin.subscriptions.steps import can_advance
from tenantadmin.subscriptions.steps import issues_for
from tenantadmin.subscriptions.steps import project_step
from tenantadmin.subscriptions.steps import step_hint

logger = logging.getLogger(__name__)


class WizardPreconditionError(WizardError):
    """The wizard cannot be opened (no tenant, no catalog, unknown plan)."""


class SubmissionInProgressError(WizardError):
    def __init__(self, detail: str = "A submission is already in progress."):
        super().__init__(detail, code="submission_in_progress")


@dataclass(frozen=True)
class ModeConfig:
    mode: WizardMode
    layout: StepLayout
    read_only_fields: frozenset[str]
    # HTMX event fired on the hosting page once the platform accepted the request.
    success_event: str
    title: str
    success_message: str


MODE_CONFIGS: dict[WizardMode, ModeConfig] = {
    WizardMode.ASSIGN: ModeConfig(
        mode=WizardMode.ASSIGN,
        layout=ASSIGN_LAYOUT,
        read_only_fields=frozenset(),
        success_event="plan-assigned",
        title=_("Assign a plan"),
        success_message=_("The plan has been assigned."),
    ),
    WizardMode.EXTEND: ModeConfig(
        mode=WizardMode.EXTEND,
        layout=EXTEND_LAYOUT,
        read_only_fields=frozenset({"selected_plan_id"}),
        success_event="plan-extended",
        title=_("Extend the plan"),
        success_message=_("The plan has been extended."),
    ),
}


@dataclass(frozen=True)
class SubmissionResult:
    success: bool
    message: str = ""
    data: Any = None


class PlanWizard:
    """
    One open wizard: its form state, the catalog it was opened with and the
    rules of its mode.

    The state is replaced, never mutated in place, so a view can load a
    wizard from the session, apply one user action and store ``wizard.state``
    back.
    """

    def __init__(
        self,
        state: WizardFormState,
        plans: Iterable[Plan],
        *,
        now: Callable[[], dt.datetime] = timezone.now,
    ):
        self.state = state
        self.plans = tuple(plans)
        self.config = MODE_CONFIGS[WizardMode(state.mode)]
        self.now = now

    @classmethod
    def open(  # noqa: PLR0913
        cls,
        mode: WizardMode,
        tenant_id: str,
        tenant_name: str,
        plans: Iterable[Plan],
        *,
        existing_plan_id: str | None = None,
        tax_rate: Decimal | None = None,
        now: Callable[[], dt.datetime] = timezone.now,
    ) -> PlanWizard:
        """
        Start a wizard for ``tenant_id``.

        Extensions are seeded with the tenant's current plan, which must be
        part of ``plans``.

        Raises:
            WizardPreconditionError: no tenant, an empty catalog, or (when
                extending) a missing or unknown current plan.
        """
        plans = tuple(plans)
        if not tenant_id:
            raise WizardPreconditionError(
                "A tenant is required to open the plan wizard.",
                code="missing_tenant",
            )
        if not plans:
            raise WizardPreconditionError(
                "No plans are available in the catalog.",
                code="empty_catalog",
            )

        state = WizardFormState(
            mode=mode,
            tenant_id=str(tenant_id),
            tenant_name=tenant_name or "",
            tax_rate=DEFAULT_TAX_RATE if tax_rate is None else tax_rate,
        )

        if mode == WizardMode.EXTEND:
            if not existing_plan_id:
                raise WizardPreconditionError(
                    "The tenant has no plan to extend.",
                    code="missing_plan",
                )
            if find_plan(plans, existing_plan_id) is None:
                raise WizardPreconditionError(
                    f"The tenant's current plan ({existing_plan_id}) is not in the catalog.",
                    code="unknown_plan",
                )
            # Seeded before the field is locked.
            state = apply_field_update(
                state,
                "selected_plan_id",
                existing_plan_id,
                plans=plans,
                now=now,
            )

        logger.info("Opened %s wizard for tenant %s", mode, tenant_id)
        return cls(state, plans, now=now)

    # Derived values, recomputed on every read.

    @property
    def layout(self) -> StepLayout:
        return self.config.layout

    @property
    def pricing(self) -> PricingCalculation | None:
        return derive_pricing(self.state)

    @property
    def current_step(self) -> int:
        return self.state.current_step

    @property
    def step_title(self) -> str:
        return self.layout.title_at(self.state.current_step)

    @property
    def step(self) -> StepVariant:
        return project_step(self.state, self.pricing, self.layout)

    @property
    def issues(self) -> list[StepIssue]:
        return issues_for(self.state, self.pricing, self.layout)

    @property
    def can_advance(self) -> bool:
        return can_advance(self.state, self.pricing, self.layout)

    @property
    def hint(self) -> str | None:
        return step_hint(self.state, self.pricing, self.layout)

    @property
    def is_last_step(self) -> bool:
        return self.state.current_step >= LAST_STEP

    # Edits

    def _ensure_editable(self) -> None:
        if self.state.submitting:
            raise SubmissionInProgressError

    def update_field(self, field: str, value: Any) -> WizardFormState:
        self._ensure_editable()
        self.state = apply_field_update(
            self.state,
            field,
            value,
            plans=self.plans,
            now=self.now,
            read_only=self.config.read_only_fields,
        )
        return self.state

    def update_fields(self, values: dict[str, Any]) -> WizardFormState:
        """Apply several edits in order; side effects of earlier ones may be overridden."""
        for field, value in values.items():
            self.update_field(field, value)
        return self.state

    def reset_custom_price(self) -> WizardFormState:
        self._ensure_editable()
        self.state = reset_custom_price(self.state)
        return self.state

    def attach_receipt(self, attachment: ReceiptAttachment) -> WizardFormState:
        """Attach a stored receipt, discarding the one it replaces."""
        previous = self.state.receipt_file
        self.update_field("receipt_file", attachment)
        if previous is not None and previous.storage_path != attachment.storage_path:
            discard_receipt(previous)
        return self.state

    def record_errors(self, messages: dict[str, str]) -> WizardFormState:
        """Show field errors found outside the step rules (unparseable input)."""
        errors = dict(self.state.errors)
        errors.update({field: str(message) for field, message in messages.items()})
        self.state = self.state.model_copy(update={"errors": errors})
        return self.state

    def reject_receipt(self, message: str) -> WizardFormState:
        """Record a refused upload; the state keeps whatever it held before."""
        return self.record_errors({"receipt_file": message})

    # Navigation

    def next_step(self) -> bool:
        """
        Move forward one step if the current one is valid.

        Returns True when the step changed. Otherwise the current step's
        issues are recorded in ``state.errors``.
        """
        issues = self.issues
        if issues:
            errors = dict(self.state.errors)
            for issue in issues:
                errors.setdefault(issue.field, str(issue.message))
            self.state = self.state.model_copy(update={"errors": errors})
            return False
        if self.is_last_step:
            return False
        self.state = self.state.model_copy(
            update={"current_step": min(self.state.current_step + 1, LAST_STEP)},
        )
        return True

    def prev_step(self) -> bool:
        if self.state.current_step <= FIRST_STEP:
            return False
        self.state = self.state.model_copy(
            update={"current_step": max(self.state.current_step - 1, FIRST_STEP)},
        )
        return True

    # Submission

    def build_request(self) -> AssignPlanRequest:
        return build_request(self.state, self.pricing)

    def start_submission(self) -> AssignPlanRequest:
        """
        Mark the wizard as submitting and return the request to send.

        Raises:
            SubmissionInProgressError: a submission is already outstanding.
            WizardError: the wizard is not on a valid final step.
        """
        if self.state.submitting:
            raise SubmissionInProgressError
        if self.state.completed:
            raise WizardError("The wizard was already submitted.", code="already_completed")
        if not self.is_last_step or not self.can_advance:
            raise WizardError(
                "The wizard is not ready to be submitted.",
                code="not_ready",
            )
        request = self.build_request()
        self.state = self.state.model_copy(
            update={"submitting": True, "submit_error": None},
        )
        return request

    def send(
        self,
        client: PlanAssignmentClient,
        request: AssignPlanRequest,
    ) -> SubmissionResult:
        """Deliver ``request`` to the platform; failures become a result, not an exception."""
        receipt = None
        if not self.state.is_prepaid and self.state.with_receipt:
            receipt = self.state.receipt_file

        if self.config.mode == WizardMode.EXTEND:
            operation = client.extend_plan
        else:
            operation = client.assign_plan

        try:
            envelope = operation(self.state.tenant_id, request, receipt=receipt)
        except PlatformApiError as exc:
            logger.warning(
                "%s for tenant %s failed: %s",
                self.config.mode,
                self.state.tenant_id,
                exc.detail,
            )
            message = exc.platform_message or str(SUBMIT_FALLBACK_MESSAGES[self.config.mode])
            return SubmissionResult(success=False, message=message)
        except Exception:
            # Storage or transport faults still have to release the wizard.
            logger.exception(
                "%s for tenant %s could not be sent",
                self.config.mode,
                self.state.tenant_id,
            )
            return SubmissionResult(
                success=False,
                message=str(SUBMIT_FALLBACK_MESSAGES[self.config.mode]),
            )

        return SubmissionResult(
            success=True,
            message=envelope.message or str(self.config.success_message),
            data=envelope.data,
        )

    def finish_submission(self, result: SubmissionResult) -> WizardFormState:
        """Record the outcome; a failure leaves the wizard on its current step."""
        if result.success:
            update = {"submitting": False, "submit_error": None, "completed": True}
        else:
            update = {"submitting": False, "submit_error": result.message}
        self.state = self.state.model_copy(update=update)
        return self.state

    def submit(self, client: PlanAssignmentClient) -> SubmissionResult:
        request = self.start_submission()
        result = self.send(client, request)
        self.finish_submission(result)
        return result

    def discard(self) -> None:
        """Release what the wizard holds outside its state (the parked receipt)."""
        discard_receipt(self.state.receipt_file)
