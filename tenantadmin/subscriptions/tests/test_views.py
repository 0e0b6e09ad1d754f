"""
Tests for the plan wizard HTMX views.

The platform is never contacted: the catalog and assignment collaborators
are patched at class level.
"""

import json
from decimal import Decimal
from http import HTTPStatus
from types import SimpleNamespace
from unittest import mock

import pytest
from django.contrib.sessions.backends.db import SessionStore
from django.core.files.uploadedfile import SimpleUploadedFile
from django.urls import reverse

from tenantadmin.core.api_client import ApiEnvelope
from tenantadmin.core.api_client import PlatformApiError
from tenantadmin.subscriptions.catalog import PlanCatalogClient
from tenantadmin.subscriptions.client import PlanAssignmentClient
from tenantadmin.subscriptions.constants import BillingMethod
from tenantadmin.subscriptions.constants import InvoiceType
from tenantadmin.subscriptions.constants import PaymentMethod
from tenantadmin.subscriptions.constants import WizardMode
from tenantadmin.subscriptions.session import PLAN_WIZARDS_SESSION_KEY
from tenantadmin.subscriptions.session import load_wizard
from tenantadmin.subscriptions.session import new_wizard_id
from tenantadmin.subscriptions.session import save_wizard
from tenantadmin.subscriptions.tests.factories import go_to_step
from tenantadmin.subscriptions.tests.factories import open_wizard
from tenantadmin.subscriptions.tests.factories import ready_wizard
from tenantadmin.subscriptions.views import MODAL_ID

pytestmark = pytest.mark.django_db

PDF = b"%PDF-1.4\nbank receipt"


@pytest.fixture
def console(client, user):
    client.force_login(user)
    return client


@pytest.fixture
def catalog(plans):
    with mock.patch.object(PlanCatalogClient, "list_plans", return_value=plans) as list_plans:
        yield list_plans


def open_modal(client, name="assign_plan", tenant_id="tenant-42", **params):
    url = reverse(f"subscriptions:{name}", kwargs={"tenant_id": tenant_id})
    return client.get(url, {"tenant_name": "Acme SARL", **params})


def step_url(wizard_id):
    return reverse("subscriptions:plan_wizard_step", kwargs={"wizard_id": wizard_id})


def open_wizard_ids(client):
    return list(client.session.get(PLAN_WIZARDS_SESSION_KEY, {}))


def stored_wizard(client, wizard_id):
    return load_wizard(SimpleNamespace(session=client.session), wizard_id)


def seed_wizard(client, wizard):
    """Put ``wizard`` in the test client's session and return its id."""
    session = client.session
    wizard_id = new_wizard_id()
    save_wizard(SimpleNamespace(session=session), wizard_id, wizard)
    session.save()
    return wizard_id


def hx_trigger(response):
    return json.loads(response["HX-Trigger"])


def test_login_required(client):
    response = open_modal(client)

    assert response.status_code == HTTPStatus.FOUND
    assert "/admin/login/" in response["Location"]


class TestOpenWizard:
    def test_assign_renders_first_step(self, console, catalog):
        response = open_modal(console)

        assert response.status_code == HTTPStatus.OK
        content = response.content.decode()
        assert 'data-testid="plan-wizard-form"' in content
        assert "Assign a plan" in content
        assert "Acme SARL" in content
        assert "Pro (1 000.00 MAD / month)" in content
        catalog.assert_called_once_with(public_only=True)
        assert len(open_wizard_ids(console)) == 1

    def test_catalog_visibility_follows_settings(self, console, catalog, settings):
        settings.PLAN_CATALOG_PUBLIC_ONLY = False

        open_modal(console)

        catalog.assert_called_once_with(public_only=False)

    def test_each_open_gets_its_own_wizard(self, console, catalog):
        open_modal(console, tenant_id="tenant-1")
        open_modal(console, tenant_id="tenant-2")

        tenants = {
            stored_wizard(console, wizard_id).state.tenant_id
            for wizard_id in open_wizard_ids(console)
        }
        assert tenants == {"tenant-1", "tenant-2"}

    def test_extend_preselects_current_plan(self, console, catalog):
        response = open_modal(console, "extend_plan", plan_id="plan-basic")

        assert response.status_code == HTTPStatus.OK
        assert "Extend the plan" in response.content.decode()
        (wizard_id,) = open_wizard_ids(console)
        wizard = stored_wizard(console, wizard_id)
        assert wizard.config.mode == WizardMode.EXTEND
        assert wizard.state.selected_plan_id == "plan-basic"

    def test_extend_without_plan_shows_error(self, console, catalog):
        response = open_modal(console, "extend_plan")

        content = response.content.decode()
        assert 'data-testid="plan-wizard-error"' in content
        assert "The tenant has no plan to extend." in content
        assert open_wizard_ids(console) == []

    def test_empty_catalog_shows_error(self, console, catalog):
        catalog.return_value = []

        response = open_modal(console)

        assert "No plans are available in the catalog." in response.content.decode()

    def test_unreachable_platform_shows_error(self, console, catalog):
        catalog.side_effect = PlatformApiError(
            "Could not reach the platform API: timed out",
            code="transport_error",
        )

        response = open_modal(console)

        assert "Could not reach the platform API" in response.content.decode()
        assert open_wizard_ids(console) == []


class TestSteps:
    def test_full_assign_flow(self, console, catalog):
        open_modal(console)
        (wizard_id,) = open_wizard_ids(console)
        url = step_url(wizard_id)

        console.post(url, {"action": "next", "selected_plan_id": "plan-pro"})
        console.post(url, {"action": "next", "invoice_type": InvoiceType.STANDARD})
        response = console.post(url, {"action": "next", "billing_method": BillingMethod.MONTHLY})
        assert 'data-testid="plan-wizard-hint"' in response.content.decode()
        assert "1 200.00 MAD" in response.content.decode()

        console.post(url, {"action": "next", "due_date": "2024-03-01"})
        assert stored_wizard(console, wizard_id).current_step == 5

        envelope = ApiEnvelope(success=True, message="Plan Pro assigned to Acme SARL")
        with mock.patch.object(
            PlanAssignmentClient,
            "assign_plan",
            return_value=envelope,
        ) as assign_plan:
            response = console.post(
                url,
                {"action": "submit", "auto_renewal_enabled": "on", "grace_period": "auto"},
            )

        assert response.status_code == HTTPStatus.NO_CONTENT
        assert hx_trigger(response) == {
            "plan-assigned": {"tenantId": "tenant-42"},
            "toast": {"level": "success", "message": "Plan Pro assigned to Acme SARL"},
            "close-modal": MODAL_ID,
        }
        tenant_id, request = assign_plan.call_args.args
        assert tenant_id == "tenant-42"
        assert request.plan_id == "plan-pro"
        assert request.price == Decimal("1000")
        assert assign_plan.call_args.kwargs == {"receipt": None}
        assert open_wizard_ids(console) == []

    def test_invalid_step_does_not_advance(self, console, catalog):
        open_modal(console)
        (wizard_id,) = open_wizard_ids(console)

        response = console.post(step_url(wizard_id), {"action": "next"})

        assert response.status_code == HTTPStatus.OK
        assert "Please select a plan." in response.content.decode()
        assert stored_wizard(console, wizard_id).current_step == 1

    def test_unknown_plan_is_reported(self, console, plans):
        wizard_id = seed_wizard(console, open_wizard(plans))

        response = console.post(
            step_url(wizard_id),
            {"action": "update", "selected_plan_id": "plan-gone"},
        )

        assert response.status_code == HTTPStatus.OK
        errors = stored_wizard(console, wizard_id).state.errors
        assert "selected_plan_id" in errors

    def test_prev(self, console, plans):
        wizard_id = seed_wizard(console, go_to_step(open_wizard(plans), 3))

        console.post(step_url(wizard_id), {"action": "prev"})

        assert stored_wizard(console, wizard_id).current_step == 2

    def test_extend_plan_cannot_be_changed(self, console, plans):
        wizard = open_wizard(plans, WizardMode.EXTEND, existing_plan_id="plan-basic")
        wizard_id = seed_wizard(console, wizard)

        console.post(step_url(wizard_id), {"action": "next", "selected_plan_id": "plan-pro"})

        stored = stored_wizard(console, wizard_id)
        assert stored.state.selected_plan_id == "plan-basic"
        assert stored.current_step == 2

    def test_reset_price(self, console, plans):
        wizard = open_wizard(
            plans,
            selected_plan_id="plan-pro",
            invoice_type=InvoiceType.STANDARD,
            billing_method=BillingMethod.MONTHLY,
            custom_price=Decimal("800"),
        )
        wizard_id = seed_wizard(console, go_to_step(wizard, 3))

        console.post(step_url(wizard_id), {"action": "reset_price"})

        stored = stored_wizard(console, wizard_id)
        assert stored.state.custom_price is None
        assert stored.pricing.base_price == Decimal("1000")

    def test_unknown_wizard_is_gone(self, console):
        response = console.post(step_url("missing"), {"action": "next"})

        assert response.status_code == HTTPStatus.GONE
        assert hx_trigger(response)["toast"]["level"] == "warning"

    def test_close_discards_wizard(self, console, plans):
        wizard_id = seed_wizard(console, open_wizard(plans))

        response = console.post(step_url(wizard_id), {"action": "close"})

        assert response.status_code == HTTPStatus.NO_CONTENT
        assert hx_trigger(response) == {"close-modal": MODAL_ID}
        assert open_wizard_ids(console) == []


class TestReceiptUpload:
    def payment_step(self, console, plans):
        wizard = open_wizard(
            plans,
            selected_plan_id="plan-pro",
            invoice_type=InvoiceType.STANDARD,
            billing_method=BillingMethod.MONTHLY,
            with_receipt=True,
        )
        return seed_wizard(console, go_to_step(wizard, 4))

    def test_accepted_receipt_is_attached(self, console, plans):
        wizard_id = self.payment_step(console, plans)

        response = console.post(
            step_url(wizard_id),
            {
                "action": "update",
                "with_receipt": "on",
                "receipt_upload": SimpleUploadedFile(
                    "virement.pdf",
                    PDF,
                    content_type="application/pdf",
                ),
                "payment_method": PaymentMethod.BANK_TRANSFER,
                "payment_reference": "VIR-1",
            },
        )

        assert "virement.pdf" in response.content.decode()
        state = stored_wizard(console, wizard_id).state
        assert state.receipt_file.name == "virement.pdf"
        assert state.payment_method == PaymentMethod.BANK_TRANSFER
        assert state.payment_reference == "VIR-1"

    def test_refused_receipt_leaves_state_unchanged(self, console, plans):
        wizard_id = self.payment_step(console, plans)

        response = console.post(
            step_url(wizard_id),
            {
                "action": "update",
                "with_receipt": "on",
                "receipt_upload": SimpleUploadedFile(
                    "notes.txt",
                    b"not a receipt",
                    content_type="text/plain",
                ),
            },
        )

        assert "Only PDF, JPEG or PNG receipts are accepted." in response.content.decode()
        state = stored_wizard(console, wizard_id).state
        assert state.receipt_file is None
        assert "receipt_file" in state.errors


class TestSubmit:
    def test_platform_failure_is_shown_verbatim(self, console, plans):
        wizard_id = seed_wizard(console, ready_wizard(plans))
        error = PlatformApiError(
            "Tenant is suspended",
            code="http_error",
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            platform_message="Tenant is suspended",
        )

        with mock.patch.object(PlanAssignmentClient, "assign_plan", side_effect=error):
            response = console.post(
                step_url(wizard_id),
                {"action": "submit", "auto_renewal_enabled": "on"},
            )

        assert response.status_code == HTTPStatus.OK
        assert 'data-testid="plan-wizard-submit-error"' in response.content.decode()
        assert "Tenant is suspended" in response.content.decode()
        state = stored_wizard(console, wizard_id).state
        assert state.submit_error == "Tenant is suspended"
        assert state.submitting is False
        assert state.current_step == 5

    def test_unexpected_error_does_not_lock_the_wizard(self, console, plans):
        wizard_id = seed_wizard(console, ready_wizard(plans))

        with mock.patch.object(PlanAssignmentClient, "assign_plan", side_effect=OSError):
            response = console.post(
                step_url(wizard_id),
                {"action": "submit", "auto_renewal_enabled": "on"},
            )

        assert response.status_code == HTTPStatus.OK
        assert stored_wizard(console, wizard_id).state.submitting is False

        response = console.post(step_url(wizard_id), {"action": "prev"})

        assert response.status_code == HTTPStatus.OK
        assert stored_wizard(console, wizard_id).current_step == 4

    def test_extend_fires_extension_event(self, console, plans):
        wizard_id = seed_wizard(console, ready_wizard(plans, WizardMode.EXTEND))

        with mock.patch.object(
            PlanAssignmentClient,
            "extend_plan",
            return_value=ApiEnvelope(success=True),
        ) as extend_plan:
            response = console.post(
                step_url(wizard_id),
                {"action": "submit", "auto_renewal_enabled": "on"},
            )

        extend_plan.assert_called_once()
        payload = hx_trigger(response)
        assert payload["plan-extended"] == {"tenantId": "tenant-42"}
        assert payload["toast"]["message"] == "The plan has been extended."

    def test_submit_before_last_step_re_renders(self, console, plans):
        wizard_id = seed_wizard(console, go_to_step(ready_wizard(plans), 4))

        with mock.patch.object(PlanAssignmentClient, "assign_plan") as assign_plan:
            response = console.post(step_url(wizard_id), {"action": "submit"})

        assert response.status_code == HTTPStatus.OK
        assign_plan.assert_not_called()
        assert stored_wizard(console, wizard_id).state.submitting is False

    def test_second_submit_conflicts(self, console, plans):
        wizard = ready_wizard(plans)
        wizard.start_submission()
        wizard_id = seed_wizard(console, wizard)

        with mock.patch.object(PlanAssignmentClient, "assign_plan") as assign_plan:
            response = console.post(step_url(wizard_id), {"action": "submit"})

        assert response.status_code == HTTPStatus.CONFLICT
        assert "close-modal" not in hx_trigger(response)
        assign_plan.assert_not_called()

    def test_edits_conflict_while_submitting(self, console, plans):
        wizard = ready_wizard(plans)
        wizard.start_submission()
        wizard_id = seed_wizard(console, wizard)

        response = console.post(step_url(wizard_id), {"action": "prev"})

        assert response.status_code == HTTPStatus.CONFLICT
        assert stored_wizard(console, wizard_id).current_step == 5

    def test_result_after_close_is_ignored(self, console, plans):
        wizard_id = seed_wizard(console, ready_wizard(plans))
        session_key = console.session.session_key

        def close_meanwhile(*args, **kwargs):
            other = SessionStore(session_key=session_key)
            other[PLAN_WIZARDS_SESSION_KEY].pop(wizard_id)
            other.save()
            return ApiEnvelope(success=True)

        with mock.patch.object(
            PlanAssignmentClient,
            "assign_plan",
            side_effect=close_meanwhile,
        ):
            response = console.post(
                step_url(wizard_id),
                {"action": "submit", "auto_renewal_enabled": "on"},
            )

        assert response.status_code == HTTPStatus.NO_CONTENT
        assert "HX-Trigger" not in response
        assert open_wizard_ids(console) == []
