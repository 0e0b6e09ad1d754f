"""
Session storage for open plan wizards.

Each wizard instance gets its own opaque id, so two modals for different
tenants (or a reopened modal) never share state. The entry holds the form
state and the catalog the wizard was opened with.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from pydantic import ValidationError

from tenantadmin.subscriptions.catalog import Plan
from tenantadmin.subscriptions.state import WizardFormState
from tenantadmin.subscriptions.workflows import PlanWizard
from tenantadmin.subscriptions.workflows import SubmissionResult

if TYPE_CHECKING:
    from django.http import HttpRequest

logger = logging.getLogger(__name__)

PLAN_WIZARDS_SESSION_KEY = "plan_wizards"


def new_wizard_id() -> str:
    return uuid.uuid4().hex


def _entries(request: HttpRequest) -> dict:
    return request.session.setdefault(PLAN_WIZARDS_SESSION_KEY, {})


def save_wizard(request: HttpRequest, wizard_id: str, wizard: PlanWizard) -> None:
    _entries(request)[wizard_id] = {
        "state": wizard.state.model_dump(mode="json"),
        "plans": [plan.model_dump(mode="json", by_alias=True) for plan in wizard.plans],
    }
    request.session.modified = True


def persist(request: HttpRequest) -> None:
    """Write the session now rather than at the end of the request."""
    request.session.save()


def load_wizard(request: HttpRequest, wizard_id: str) -> PlanWizard | None:
    """Return the wizard stored under ``wizard_id``, or None when it is gone."""
    entry = request.session.get(PLAN_WIZARDS_SESSION_KEY, {}).get(wizard_id)
    if entry is None:
        return None
    try:
        state = WizardFormState.model_validate(entry["state"])
        plans = [Plan.model_validate(raw) for raw in entry.get("plans", [])]
    except (KeyError, ValidationError):
        logger.warning("Dropping unreadable wizard %s from session", wizard_id)
        request.session[PLAN_WIZARDS_SESSION_KEY].pop(wizard_id, None)
        request.session.modified = True
        return None
    return PlanWizard(state, plans)


def discard_wizard(request: HttpRequest, wizard_id: str) -> None:
    """Forget the wizard and release its parked receipt."""
    wizard = load_wizard(request, wizard_id)
    if wizard is not None:
        wizard.discard()
    entries = request.session.get(PLAN_WIZARDS_SESSION_KEY, {})
    if entries.pop(wizard_id, None) is not None:
        request.session.modified = True
        logger.info("Closed plan wizard %s", wizard_id)


def _is_still_open(request: HttpRequest, wizard_id: str) -> bool:
    """Check the stored session, not this request's copy, for the wizard."""
    session_key = request.session.session_key
    if session_key is None:
        return wizard_id in request.session.get(PLAN_WIZARDS_SESSION_KEY, {})
    stored = request.session.__class__(session_key=session_key)
    return wizard_id in stored.get(PLAN_WIZARDS_SESSION_KEY, {})


def record_submission(
    request: HttpRequest,
    wizard_id: str,
    wizard: PlanWizard,
    result: SubmissionResult,
) -> PlanWizard | None:
    """
    Store a submission outcome on the wizard if it is still open.

    The platform call is made after the "submitting" flag was saved, so the
    modal may have been closed by another request in the meantime. A late
    result for a closed wizard is logged and dropped, and None is returned.
    """
    if not _is_still_open(request, wizard_id):
        logger.info(
            "Ignoring %s result for closed wizard %s (tenant %s)",
            "successful" if result.success else "failed",
            wizard_id,
            wizard.state.tenant_id,
        )
        request.session.get(PLAN_WIZARDS_SESSION_KEY, {}).pop(wizard_id, None)
        request.session.modified = True
        return None
    wizard.finish_submission(result)
    save_wizard(request, wizard_id, wizard)
    return wizard
