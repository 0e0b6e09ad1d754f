from decimal import Decimal

import pytest

from tenantadmin.subscriptions.tests.factories import PlanFactory
from tenantadmin.subscriptions.tests.factories import UserFactory


@pytest.fixture(autouse=True)
def _media_storage(settings, tmpdir) -> None:
    settings.MEDIA_ROOT = tmpdir.strpath


@pytest.fixture
def plan():
    return PlanFactory(
        plan_id="plan-pro",
        plan_name="Pro",
        monthly_price=Decimal("1000"),
        yearly_price=Decimal("10000"),
    )


@pytest.fixture
def plans(plan):
    return [
        plan,
        PlanFactory(
            plan_id="plan-basic",
            plan_name="Basic",
            monthly_price=Decimal("250"),
            yearly_price=Decimal("2500"),
        ),
    ]


@pytest.fixture
def user(db):
    return UserFactory(username="superadmin", email="superadmin@console.example")
