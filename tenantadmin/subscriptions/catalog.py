"""
Plan catalog: the subscription tiers a tenant can be put on.

Plans are owned by the platform's subscription service and are read-only
here. The wizard fetches the catalog once when it opens and keeps the list in
the session for plan lookups.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import Decimal

from django.conf import settings
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from tenantadmin.core.api_client import PlatformApiClient

logger = logging.getLogger(__name__)


def default_currency() -> str:
    """Currency assumed when the platform omits one."""
    return getattr(settings, "PLAN_WIZARD_DEFAULT_CURRENCY", "MAD")


class Plan(BaseModel):
    """
    A subscription tier as served by ``/api/subscriptions/plans``.

    Field names follow Python conventions; the camelCase API keys are
    accepted through aliases.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    plan_id: str
    plan_name: str
    description: str = ""
    monthly_price: Decimal = Decimal(0)
    yearly_price: Decimal = Decimal(0)
    currency: str = Field(default_factory=default_currency)

    max_users: int | None = None
    max_employees: int | None = None
    max_departments: int | None = None
    max_database_storage_mb: int | None = Field(
        default=None,
        alias="maxDatabaseStorageMB",
    )
    max_s3_storage_mb: int | None = Field(default=None, alias="maxS3StorageMB")

    grace_period_days: int = 0
    is_public: bool = True
    is_recommended: bool = False


def find_plan(plans: Iterable[Plan], plan_id: str | None) -> Plan | None:
    """Return the plan with ``plan_id`` or None."""
    if not plan_id:
        return None
    for plan in plans:
        if plan.plan_id == plan_id:
            return plan
    return None


class PlanCatalogClient:
    """Reads the plan catalog from the platform API."""

    PLANS_PATH = "/api/subscriptions/plans"

    def __init__(self, api: PlatformApiClient):
        self.api = api

    def list_plans(self, *, public_only: bool = True) -> list[Plan]:
        """
        Fetch the catalog.

        Entries that do not parse are skipped with a warning rather than
        failing the whole wizard.
        """
        params = {"publicOnly": "true"} if public_only else None
        envelope = self.api.get(self.PLANS_PATH, params=params)

        raw_plans = envelope.data
        if isinstance(raw_plans, dict):
            raw_plans = raw_plans.get("plans", [])
        plans: list[Plan] = []
        for raw in raw_plans or []:
            try:
                plans.append(Plan.model_validate(raw))
            except ValidationError:
                logger.warning("Skipping unreadable plan entry: %r", raw)
        logger.info("Loaded %s plan(s) from catalog", len(plans))
        return plans
